import logging
import sys

import uvicorn

from bikemanager.reminders.service import create_app

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

app = create_app()


if __name__ == "__main__":
    uvicorn.run("bikemanager.main:app", host="0.0.0.0", port=8000)
