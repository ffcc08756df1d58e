"""
Centralized configuration: env vars, run and dry-run limits.
"""
import os


# ── Redis / RQ ────────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
RQ_QUEUE_NAME = os.getenv('RQ_QUEUE_NAME', 'catalog-policy')

# ── PostgreSQL ────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')
DB_POOL_SIZE = int(os.getenv('DB_POOL_SIZE', '5'))
DB_MAX_OVERFLOW = int(os.getenv('DB_MAX_OVERFLOW', '10'))
DB_ECHO = os.getenv('DB_ECHO', '').lower() in ('1', 'true', 'yes')

# ── Evaluation runs ───────────────────────────────────────────────────────────
RUN_BATCH_SIZE = int(os.getenv('RUN_BATCH_SIZE', '500'))
RUN_JOB_TIMEOUT = int(os.getenv('RUN_JOB_TIMEOUT', '3600'))
STALE_RUN_MAX_AGE_MINUTES = int(os.getenv('STALE_RUN_MAX_AGE_MINUTES', '5'))
ERROR_SAMPLE_LIMIT = int(os.getenv('ERROR_SAMPLE_LIMIT', '10'))

# ── Promotion gates ───────────────────────────────────────────────────────────
PROMOTION_COVERAGE_THRESHOLD = float(os.getenv('PROMOTION_COVERAGE_THRESHOLD', '1.0'))
PROMOTION_MAX_ERRORS = int(os.getenv('PROMOTION_MAX_ERRORS', '0'))

# ── Dry run ───────────────────────────────────────────────────────────────────
DRY_RUN_MAX_LIMIT = int(os.getenv('DRY_RUN_MAX_LIMIT', '10000'))
DRY_RUN_DEFAULT_LIMIT = int(os.getenv('DRY_RUN_DEFAULT_LIMIT', '1000'))
DRY_RUN_TIMEOUT_SECONDS = float(os.getenv('DRY_RUN_TIMEOUT_SECONDS', '60'))

# ── Catalog collaborator ──────────────────────────────────────────────────────
# ingestion_status value that marks an item as ready for evaluation
READY_INGESTION_STATUS = 'ready'
MEDIA_TYPES = ['movie', 'show']
