import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or (
        'dev-secret-key-change-in-production'
    )
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or (
        'sqlite:///kudos_cafe.db'
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Pagination configuration
    ITEMS_PER_PAGE = 20

    # Cancellations placed within this many minutes of ordering only get
    # a partial refund.
    REFUND_PARTIAL_WINDOW_MINUTES = int(
        os.environ.get('REFUND_PARTIAL_WINDOW_MINUTES', '30')
    )
    REFUND_PARTIAL_FRACTION = float(
        os.environ.get('REFUND_PARTIAL_FRACTION', '0.35')
    )
    CURRENCY_SYMBOL = os.environ.get('CURRENCY_SYMBOL', '₱')

    # Uploads (menu photos, gallery)
    MAX_CONTENT_LENGTH = int(
        os.environ.get('UPLOAD_MAX_BYTES', str(8 * 1024 * 1024))
    )

    LOW_STOCK_ALERTS_ENABLED = (
        os.environ.get('LOW_STOCK_ALERTS_ENABLED', 'true').lower() == 'true'
    )

    # Checkouts racing for the same daily order number retry this often
    ORDER_NUMBER_ATTEMPTS = 3

    # Upper bound for message long-polls, in seconds
    MESSAGE_WAIT_MAX_SECONDS = int(
        os.environ.get('MESSAGE_WAIT_MAX_SECONDS', '25')
    )
