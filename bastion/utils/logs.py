# bastion/utils/logs.py
import logging
import os

from colorama import Fore, Style, init

init(autoreset=True)  # reseta cores automaticamente

PROCESS_LEVEL = 25  # INFO=20, WARNING=30 -> PROCESS no meio
logging.addLevelName(PROCESS_LEVEL, "PROCESS")


def process(self, message, *args, **kwargs):
    if self.isEnabledFor(PROCESS_LEVEL):
        self._log(PROCESS_LEVEL, message, args, **kwargs)


# injetando método process em logging.Logger
logging.Logger.process = process


class ColorFormatter(logging.Formatter):
    COLORS = {
        'PROCESS': Fore.CYAN,
        'DEBUG': Fore.BLUE,
        'INFO': Fore.GREEN,
        'WARNING': Fore.YELLOW,
        'ERROR': Fore.RED,
        'CRITICAL': Fore.MAGENTA
    }

    def format(self, record):
        levelname = record.levelname
        color = self.COLORS.get(levelname, Fore.WHITE)
        log_fmt = f"[%(asctime)s] {levelname:<8} %(name)s: %(message)s"
        formatter = logging.Formatter(log_fmt, "%Y-%m-%d %H:%M:%S")
        return color + formatter.format(record) + Style.RESET_ALL


def _level_from_env(default: int) -> int:
    name = os.environ.get("LOG_LEVEL", "").strip().upper()
    if not name:
        return default
    if name == "PROCESS":
        return PROCESS_LEVEL
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else default


def setup_logger(root_level=logging.INFO, silence_names=None):
    """
    Configura o logger ``bastion`` com saída colorida.

    :param root_level: nível base (LOG_LEVEL no ambiente tem precedência)
    :param silence_names: nomes extra de loggers a silenciar
    :return: logger ``bastion`` configurado
    """
    if silence_names is None:
        silence_names = []

    logger = logging.getLogger("bastion")
    logger.setLevel(_level_from_env(root_level))

    for h in list(logger.handlers):
        logger.removeHandler(h)

    ch = logging.StreamHandler()
    ch.setFormatter(ColorFormatter())
    logger.addHandler(ch)

    defaults_to_silence = [
        "werkzeug",      # flask dev server
        "urllib3",
        "redis",
    ]
    for name in defaults_to_silence + list(silence_names):
        logging.getLogger(name).setLevel(logging.ERROR)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Devolve um logger filho de ``bastion`` (herda handler e nível)."""

    if name.startswith("bastion"):
        return logging.getLogger(name)
    return logging.getLogger(f"bastion.{name}")


logger = setup_logger()
