import os
from decimal import Decimal
from dotenv import load_dotenv

# Load .env
load_dotenv()

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///settlement.db")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Money
CURRENCY = os.getenv("CURRENCY", "EUR")
TAX_RATE = Decimal(os.getenv("TAX_RATE", "0.06"))  # IVA on gross platform earnings

# Reports
REPORT_DELIMITER = os.getenv("REPORT_DELIMITER", ";")
REPORT_ENCODING = "utf-8-sig"  # BOM for Excel

# Config documents (key-value table)
ADMIN_FEE_CONFIG_KEY = "adminFee"
COMMISSION_CONFIG_KEY = "commission"
FINANCIAL_CONFIG_KEY = "financialConfig"

# Admin actor used by CLI commands when none is given
DEFAULT_ADMIN_ACTOR = os.getenv("DEFAULT_ADMIN_ACTOR", "admin")
