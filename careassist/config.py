# careassist/config.py

import os

# Service locations inside the docker network
PATIENT_SERVICE_URL = os.getenv("PATIENT_SERVICE_URL", "http://patient-service:8000")
EXCHANGE_SERVICE_URL = os.getenv("EXCHANGE_SERVICE_URL", "http://exchange-service:8000")

# Wall clock used for "now" and "today"; stored timestamps are never converted
CLINIC_TIMEZONE = os.getenv("CLINIC_TIMEZONE", "Asia/Kolkata")

# Redis pub/sub channel carrying record change events
EXCHANGE_CHANNEL = os.getenv("EXCHANGE_CHANNEL", "exchange_changes")

HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "3.0"))
