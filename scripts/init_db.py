import logging
import sys

from ruralink.db.models import Base
from ruralink.db.session import ENGINE, check_connection, current_engine_url

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main():
    if not check_connection():
        sys.exit(1)
    logger.info("Creating Ruralink tables on %s", current_engine_url())
    Base.metadata.create_all(bind=ENGINE)
    logger.info("Tables ready: %s", ", ".join(sorted(Base.metadata.tables)))


if __name__ == "__main__":
    main()
