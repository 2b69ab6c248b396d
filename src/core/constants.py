"""Core constants used across labintake modules.

This module centralizes staging names, file names, and field tables.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

from pathlib import Path

DEFAULT_INTAKE_ROOT = Path(".labintake") / "intake"
DEFAULT_STORE_ROOT = Path(".labintake") / "store"
STAGE_INCOMING = "incoming"
STAGE_PROCESSING = "processing"
STAGE_ARCHIVE = "archive"
STAGE_FAILED = "failed"
STAGE_NAMES = (STAGE_INCOMING, STAGE_PROCESSING, STAGE_ARCHIVE, STAGE_FAILED)
MONTHLY_STAGES = (STAGE_PROCESSING, STAGE_ARCHIVE, STAGE_FAILED)
STAGE_DIR_MODE = 0o775
UPLOAD_CLAIMS_DIR_NAME = ".uploads"
RECORDS_DIR_NAME = "records"
NOTICES_DIR_NAME = "notices"
NOTICES_FILE_NAME = "notices.jsonl"
JOBS_DIR_NAME = "jobs"
LEDGER_DIR_NAME = "ledger"
SAMPLES_COLLECTION = "samples"
RESULTS_COLLECTION = "results"
CLIENTS_COLLECTION = "clients"
HASH_ALGORITHM = "sha256"
DEFAULT_SINK_TIMEOUT_SECONDS = 30.0
DEFAULT_TIME_BUDGET_SECONDS = 120.0
DEFAULT_CHUNK_ROW_LIMIT = 50
DEFAULT_LOG_LEVEL = "INFO"
SINK_RESULT_PATH = "/sentinel/sampleservice"
PLACEHOLDER_SECONDARY_KEY = "pending"
SENTINEL_EMPTY_TOKENS = ("", "null", "pending")
MAX_CELL_LENGTH = 10000
CELL_HEAD_LENGTH = 5000
CELL_TAIL_LENGTH = 2000
TRUNCATION_MARKER = "...[TRUNCATED]..."
NOTICE_PREVIEW_COLUMNS = 10
NOTICE_PREVIEW_VALUE_LENGTH = 200
ANCHOR_FIELD = "pack_reference_number"
ACCESS_USER = "user"
ACCESS_ADMIN = "admin"
ACCESS_LEVELS = (ACCESS_USER, ACCESS_ADMIN)
HEADER_SYNONYMS = {
    "pack reference number": "pack_reference_number",
    "pack reference": "pack_reference_number",
    "pack ref": "pack_reference_number",
    "site": "pack_reference_number",
    "company email": "company_email",
    "installer name": "installer_name",
    "installer email": "installer_email",
    "company name": "company_name",
    "company postcode": "company_postcode",
    "company tel": "company_tel",
    "system location": "system_location",
    "property number": "property_number",
    "town city": "town_city",
    "town/city": "town_city",
    "system age": "system_age",
    "boiler manufacturer": "boiler_manufacturer",
    "date sent": "date_sent",
    "dt_sent": "date_sent",
    "boiler id": "boiler_id",
    "boiler type": "boiler_type",
    "date installed": "date_installed",
    "dt_installed": "date_installed",
    "project id": "project_id",
    "customer id": "customer_id",
    "lab reference": "lab_reference",
    "sample reference": "sample_reference",
    "sample point": "sample_point",
    "date received": "date_received",
    "analysis date": "analysis_date",
}
SAMPLE_DEFAULT_HEADERS = (
    "pack_reference_number",
    "company_email",
    "installer_name",
    "installer_email",
    "company_name",
    "company_postcode",
    "company_tel",
    "system_location",
    "uprn",
    "property_number",
    "street",
    "town_city",
    "county",
    "postcode",
    "landlord",
    "system_age",
    "boiler_manufacturer",
    "date_sent",
    "boiler_id",
    "boiler_type",
    "date_installed",
    "project_id",
    "customer_id",
)
SAMPLE_DATE_FIELDS = ("date_sent", "date_installed")
LAB_DEFAULT_HEADERS = (
    "pack_reference_number",
    "lab_reference",
    "sample_reference",
    "data_source",
    "sample_point",
    "determinand_code",
    "method",
    "variable",
    "units",
    "value",
    "qualifier",
    "limit",
    "comments",
    "date_received",
    "analysis_date",
)
ANALYTE_FIELDS = (
    "ph_result",
    "boron_result",
    "molybdenum_result",
    "mains_cond_result",
    "sys_cond_result",
    "mains_calcium_result",
    "sys_calcium_result",
    "iron_result",
    "copper_result",
    "aluminium_result",
    "appearance_result",
    "nitrate_result",
    "manganese_result",
)
ZERO_FILLED_ANALYTES = ("manganese_result", "nitrate_result")
INVALID_RESULT_TOKENS = ("", "0", "null", "pending")
PACK_TYPE_PREFIXES = {
    "001": "vaillant",
    "005": "worcesterbosch_contract",
    "006": "worcesterbosch_service",
}
DEFAULT_PACK_TYPE = "standard"
