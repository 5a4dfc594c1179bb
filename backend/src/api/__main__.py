"""Entry point for running the API server."""

import os

import uvicorn


def main() -> None:
    host = os.getenv("HOST", "127.0.0.1")
    # PORT for PaaS platforms (Railway, Heroku, etc.)
    port = int(os.getenv("PORT") or "8000")
    uvicorn.run("api.main:app", host=host, port=port)


if __name__ == "__main__":
    main()
