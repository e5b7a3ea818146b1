from shop_translator.db import init_db
from shop_translator.ledger import CreditLedger
from shop_translator.logging_config import setup_logging


def main() -> None:
    setup_logging()
    init_db()
    expired = CreditLedger().cleanup_expired()
    print(f"Expired reservations cleaned: {expired}")


if __name__ == "__main__":
    main()
