import logging

from ai_lms import create_app, db

logger = logging.getLogger(__name__)


def init_database():
    app = create_app()
    with app.app_context():
        db.create_all()
        logger.info("Storage tables created.")


if __name__ == "__main__":
    init_database()
