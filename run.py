import os

from bastion.app import create_app
from bastion.utils.logs import logger

# ===========================================================
# CONFIGURAÇÕES
# ===========================================================
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "5000"))

app = create_app()


# ===========================================================
# MAIN EXECUÇÃO DIRETA (SEM CLI)
# ===========================================================
if __name__ == "__main__":
    logger.process(f"Iniciando servidor Flask em http://{HOST}:{PORT}")
    app.run(host=HOST, port=PORT, debug=app.debug, use_reloader=False)
