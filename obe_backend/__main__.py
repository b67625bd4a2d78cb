"""Run the API with uvicorn: ``python -m obe_backend``."""

import uvicorn

from obe_backend.core.settings import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "obe_backend.apps.api.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
