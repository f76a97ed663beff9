import os
import socket

# Database Configuration
# Uses default credentials for local Docker Compose setup
DB_URL = os.getenv("DATABASE_URL", "postgres://user:password@db:5432/booking_db")

# Application Metadata
PROJECT_NAME = "Booking Choreography Backend"
VERSION = "1.0.0"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Services hosted by this process (booking, inventory, payment)
SERVICES = [s.strip() for s in os.getenv("SERVICES", "booking,inventory,payment").split(",") if s.strip()]
RUN_BACKGROUND_WORKERS = os.getenv("RUN_BACKGROUND_WORKERS", "true").lower() == "true"

# Outbox Publisher Configuration
POLLING_INTERVAL = float(os.getenv("POLLING_INTERVAL", 10)) # Publisher checks for new records every N seconds
BATCH_SIZE = int(os.getenv("BATCH_SIZE", 100)) # How many records to fetch per poll
OUTBOX_MAX_RETRIES = int(os.getenv("OUTBOX_MAX_RETRIES", 5)) # Publish attempts before dead-lettering
PUBLISH_TIMEOUT = float(os.getenv("PUBLISH_TIMEOUT", 10)) # Upper bound for a single publish attempt
OUTBOX_STARTUP_DELAY = float(os.getenv("OUTBOX_STARTUP_DELAY", 5)) # Let the rest of the host come up first
ERROR_TRUNCATE_LENGTH = int(os.getenv("ERROR_TRUNCATE_LENGTH", 2000))

# Claim step for multiple publisher instances sharing one outbox table
INSTANCE_ID = os.getenv("INSTANCE_ID", f"{socket.gethostname()}-{os.getpid()}")
CLAIM_TTL_SECONDS = int(os.getenv("CLAIM_TTL_SECONDS", 60))

# RabbitMQ Configuration
RABBITMQ_HOST = os.getenv("RABBITMQ_HOST", "localhost")
RABBITMQ_PORT = int(os.getenv("RABBITMQ_PORT", 5672))
RABBITMQ_USER = os.getenv("RABBITMQ_USER", "guest")
RABBITMQ_PASSWORD = os.getenv("RABBITMQ_PASSWORD", "guest")
RABBITMQ_VHOST = os.getenv("RABBITMQ_VHOST", "/")
RABBITMQ_EXCHANGE = os.getenv("RABBITMQ_EXCHANGE", "booking.events")

BROKER_CONNECT_MAX_ATTEMPTS = int(os.getenv("BROKER_CONNECT_MAX_ATTEMPTS", 10))
BROKER_CONNECT_BASE_DELAY = float(os.getenv("BROKER_CONNECT_BASE_DELAY", 5))
BROKER_CONNECT_MAX_DELAY = float(os.getenv("BROKER_CONNECT_MAX_DELAY", 60))

# Consumer Configuration
CONSUMER_PREFETCH = int(os.getenv("CONSUMER_PREFETCH", 1))
HANDLER_TIMEOUT = float(os.getenv("HANDLER_TIMEOUT", 30)) # Upper bound for a single handler attempt
CONSUMER_RETRY_BASE_DELAY = float(os.getenv("CONSUMER_RETRY_BASE_DELAY", 2))
CONSUMER_RETRY_MAX_DELAY = float(os.getenv("CONSUMER_RETRY_MAX_DELAY", 30))
CONSUMER_ATTACH_RETRY_INTERVAL = float(os.getenv("CONSUMER_ATTACH_RETRY_INTERVAL", 30)) # Retry consumer registration while the broker is down

# Attempt budgets per consumer policy class
FORWARD_MAX_ATTEMPTS = int(os.getenv("FORWARD_MAX_ATTEMPTS", 3))
COMPENSATING_MAX_ATTEMPTS = int(os.getenv("COMPENSATING_MAX_ATTEMPTS", 10))
INFORMATIONAL_MAX_ATTEMPTS = int(os.getenv("INFORMATIONAL_MAX_ATTEMPTS", 2))

# Inventory Configuration
RESERVATION_LEASE_MINUTES = int(os.getenv("RESERVATION_LEASE_MINUTES", 15))
RESERVATION_SWEEP_INTERVAL = float(os.getenv("RESERVATION_SWEEP_INTERVAL", 60))

# Payment Configuration
PAYMENT_SUCCESS_RATE = float(os.getenv("PAYMENT_SUCCESS_RATE", 0.9)) # Simulated gateway approval rate
PAYMENT_MAX_RETRIES = int(os.getenv("PAYMENT_MAX_RETRIES", 3))
