"""Centralized user-facing text for the flatcache CLI."""

from __future__ import annotations

class Styles:
    ERROR = "red"
    WARNING = "yellow"
    SUCCESS = "green"
    INFO = "dim"
    TITLE = "bold cyan"
    TABLE_HEADER = "bold magenta"


class Messages:
    APP_HELP = "flatcache – a rebuildable SQLite cache over flat YAML and Markdown content."
    HELP_TYPE = "Record type to operate on (entry, asset). Defaults to every type."
    HELP_FORCE = "Rebuild even when the cache looks current."
    HELP_CONTENT = "Content directory holding the flat files (overrides config)."
    HELP_VERBOSE = "Log rebuild progress and skipped files."
    HELP_SHOW_LIMIT = "Maximum number of cached rows to display."
    HELP_SHOW_CONFIG = "Show current configuration."
    HELP_SET_CONTENT = "Set the default content directory."
    HELP_SET_BATCH = "Set the bulk insert batch size."
    HELP_SET_WATCHER = "Enable or disable file timestamp checks (true/false)."
    HELP_SET_MULTISITE = "Enable or disable locale folders for entries (true/false)."

    ERROR_TYPE_INVALID = "Unsupported record type '{value}'. Allowed values: {allowed}."
    ERROR_BATCH_INVALID = "Batch size must be greater than 0"
    ERROR_BOOLEAN_INVALID = "Invalid boolean value '{value}'. Use true/false."
    ERROR_CONTENT_MISSING = "Content directory does not exist: {path}"
    ERROR_PATH_UNRESOLVED = "Cannot derive record attributes from path '{path}'."
    ERROR_DOCUMENT_INVALID = "Malformed document {path}: {reason}"
    ERROR_DOCUMENT_NOT_MAPPING = "Document {path} does not contain a key/value mapping."
    ERROR_COLUMN_MISSING = "Column '{column}' has no value, default or nullable flag ({path})."
    ERROR_COLUMN_TYPE = "Column '{column}' expects {type}, got {value!r} ({path})."
    ERROR_CONFIG_JSON_INVALID = "Config payload must be a JSON object."
    ERROR_CONFIG_VALUE_INVALID = "Config field '{field}' has an invalid value."
    ERROR_SYNC_WRITE = "Failed to write {path}: {reason}"
    ERROR_SYNC_DELETE = "Failed to delete {path}: {reason}"
    ERROR_SYNC_RESTORE = "Failed to restore {path} after a failed rename: {reason}"
    ERROR_RECORD_MISSING = "Record '{key}' does not exist in table '{table}'."

    INFO_REBUILD_RUNNING = "Rebuilding {type} cache from {path}..."
    INFO_REBUILD_DONE = "Cached {rows} {type} row{plural} in {batches} batch{batch_plural}."
    INFO_REBUILD_SKIPPED = "Skipped {count} unreadable file{plural}; run with --verbose for details."
    INFO_REBUILD_CURRENT = "{type} cache already matches the files; nothing to do."
    INFO_NO_ROWS = "No cached {type} rows."
    INFO_CONFIG_SAVED = "Configuration saved."
    INFO_CACHE_CLEARED = "Removed cache database {path}."
    INFO_CACHE_CLEAR_NONE = "No cache database found at {path}."
    INFO_CONFIG_SUMMARY = (
        "Content directory: {content}\n"
        "Database: {database}\n"
        "Batch size: {batch}\n"
        "Read concurrency: {concurrency}\n"
        "Watcher enabled: {watcher}\n"
        "Always rebuild: {always}\n"
        "Multisite: {multisite}\n"
        "Timestamps: {timestamps}\n"
        "Asset containers: {containers}\n"
        "Exclude patterns: {excludes}"
    )
    WARNING_MISSING_FILE = "File already absent, nothing to delete: {path}"

    TABLE_STATUS_TITLE = "flatcache status"
    TABLE_HEADER_TYPE = "Type"
    TABLE_HEADER_TABLE = "Table"
    TABLE_HEADER_ROWS = "Rows"
    TABLE_HEADER_STATE = "State"
    STATE_STALE = "stale"
    STATE_FRESH = "fresh"
