import logging
import os

import uvicorn

if __name__ == "__main__":
    logging.basicConfig(
        level=os.environ.get("COURSECHAT_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    host = os.environ.get("COURSECHAT_HOST", "localhost")
    port = int(os.environ.get("COURSECHAT_PORT", "8000"))
    uvicorn.run(
        "coursechat.server:app",
        host=host,
        port=port,
        reload=True,
        reload_dirs=["coursechat"],
    )
