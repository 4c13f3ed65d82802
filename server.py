import uvicorn

from tabcast import config
from tabcast.logger import log


def main():
    log("INFO", "server_starting", f"tabcast viewer -> http://localhost:{config.SERVER_PORT}",
        host=config.SERVER_HOST, port=config.SERVER_PORT)
    # uvicorn turns SIGINT/SIGTERM into the app shutdown event, which destroys all sessions
    uvicorn.run("tabcast_api.main:app", host=config.SERVER_HOST, port=config.SERVER_PORT)


if __name__ == "__main__":
    main()
