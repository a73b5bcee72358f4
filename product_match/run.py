import os

import uvicorn
from loguru import logger


def main() -> None:
    host = os.environ.get("PM_HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", 8000))

    logger.info("Starting product-match API on {}:{}", host, port)
    uvicorn.run(
        "product_match.api:app",
        host=host,
        port=port,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )


if __name__ == "__main__":
    main()
