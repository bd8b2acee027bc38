"""Centralized user-facing text for Vellum."""

from __future__ import annotations


class Styles:
    ERROR = "red"
    WARNING = "yellow"
    SUCCESS = "green"
    INFO = "dim"
    TITLE = "bold cyan"
    TABLE_HEADER = "bold magenta"


class Messages:
    APP_HELP = "Vellum: a local semantic note store."
    HELP_CORPUS = "Create, list and delete note corpora."
    HELP_CORPUS_NAME = "Unique corpus name."
    HELP_CORPUS_REF = "Corpus id or name."
    HELP_CORPUS_ROOT = "Directory holding the corpus notes."
    HELP_INDEX = "Bring the chunk index of one or more corpora up to date."
    HELP_INDEX_FRESH = "Drop cached file metadata before indexing."
    HELP_LS = "List note paths matching a glob in the selected corpora."
    HELP_LS_PATTERN = "Glob pattern; a bare directory lists everything under it."
    HELP_SEARCH = "Semantic search over the selected corpora."
    HELP_SEARCH_QUERY = "Text to search for."
    HELP_SEARCH_TOP = "Number of results to display."
    HELP_SEARCH_PATH = "Only consider notes matching this glob."
    HELP_SEARCH_KEYWORD = "Rank chunks with BM25 keyword scoring instead of embeddings."
    HELP_SCOPE = "Corpus id or name to include (repeatable)."
    HELP_SESSION = "Reuse a tracked session id instead of --corpus."
    HELP_TRACK = "Keep the session so it can be reused by id."
    HELP_SESSIONS = "Show recently tracked sessions."
    HELP_SESSIONS_LIMIT = "Maximum number of sessions to show."
    HELP_CAT = "Print the content of an indexed note."
    HELP_NOTE_PATH = "Note path relative to the corpus root."
    HELP_INDEX_REFS = "Corpora to index; defaults to every corpus with a root."
    HELP_VERSION = "Show version and exit."
    HELP_DATA_DIR = "Directory holding the database and config."
    HELP_VERBOSE = "Enable debug logging."

    ERROR_EMPTY_NAME = "Corpus name must not be empty."
    ERROR_DUPLICATE_NAME = "Corpus already exists: {name}"
    ERROR_CORPUS_NOT_FOUND = "Corpus not found: {ref}"
    ERROR_CORPUS_ROOT_MISSING = "Corpus {name} has no root directory; pass one with --root."
    ERROR_SESSION_NOT_FOUND = "Session not found: {id}"
    ERROR_NOTE_NOT_FOUND = "Note not found: {path}"
    ERROR_SCOPE_EMPTY = "Session scope must contain at least one corpus."
    ERROR_SCOPE_DEAD = "Session scope references missing corpora: {ids}"
    ERROR_DIMENSION_MISMATCH = (
        "Query vector has dimension {actual} but stored vectors have dimension {expected}."
    )
    ERROR_EMBED_DIMENSION_DRIFT = (
        "Embedding model returned dimension {actual}; the store expects {expected}."
    )
    ERROR_EMBED_TIMEOUT = "Embedding call timed out after {seconds}s."
    ERROR_EMBED_FAILED = "Embedding call failed: {reason}"
    ERROR_EMBED_COUNT = "Embedding model returned {actual} vectors for {expected} texts."
    ERROR_NO_EMBEDDINGS = "Embedding provider returned no embeddings."
    ERROR_IO = "Unable to read {path}: {reason}"
    ERROR_TOP_K_NEGATIVE = "top_k must be >= 0"
    ERROR_EMPTY_QUERY = "Query text must not be empty."
    ERROR_METRIC_INVALID = "Unsupported similarity metric {value}. Allowed values: {allowed}."
    ERROR_PROVIDER_INVALID = "Unsupported provider '{value}'. Allowed values: {allowed}."
    ERROR_API_KEY_MISSING = (
        "API key is missing. Set `api_key` in ~/.vellum/config.json or export VELLUM_API_KEY."
    )
    ERROR_CUSTOM_BASE_URL_REQUIRED = "Custom provider requires a base URL."
    ERROR_OPENAI_PREFIX = "OpenAI API request failed: "
    ERROR_LOCAL_DEP_MISSING = (
        "Local embeddings require fastembed. Install with `pip install \"vellum[local]\"`."
    )
    ERROR_LOCAL_MODEL_LOAD = "Unable to load local model {model}: {reason}"
    ERROR_LOCAL_MODEL_EMBED = "Local model failed to embed text: {reason}"
    ERROR_CONFIG_JSON_INVALID = "Config payload must be a JSON object."
    ERROR_CONFIG_VALUE_INVALID = "Invalid config value for {field}."
    ERROR_ROOT_NEEDS_ONE_CORPUS = "--root can only be used with a single corpus."

    INFO_CORPUS_CREATED = "Created corpus {name} (id {id})."
    INFO_CORPUS_DELETED = "Deleted corpus {ref}."
    INFO_NO_CORPORA = "No corpora yet. Create one with `vellum corpus create`."
    INFO_INDEX_SUMMARY = (
        "{name}: {added} added, {modified} modified, {removed} removed, "
        "{unchanged} unchanged, {chunks} chunks embedded."
    )
    INFO_INDEX_FAILED_PATH = "  failed {path}: {reason}"
    INFO_NO_PATHS = "No matching notes."
    INFO_NO_RESULTS = "No matching chunks found."
    INFO_NO_SESSIONS = "No tracked sessions."
    INFO_SESSION_TRACKED = "Tracked session {id}."

    TABLE_CORPORA_TITLE = "Corpora"
    TABLE_RESULTS_TITLE = "Vellum search results"
    TABLE_SESSIONS_TITLE = "Tracked sessions"
    TABLE_HEADER_INDEX = "#"
    TABLE_HEADER_ID = "Id"
    TABLE_HEADER_NAME = "Name"
    TABLE_HEADER_NOTES = "Notes"
    TABLE_HEADER_ROOT = "Root"
    TABLE_HEADER_UPDATED = "Updated"
    TABLE_HEADER_SCORE = "Score"
    TABLE_HEADER_CORPUS = "Corpus"
    TABLE_HEADER_PATH = "Path"
    TABLE_HEADER_CHUNK = "Chunk"
    TABLE_HEADER_PREVIEW = "Preview"
    TABLE_HEADER_SCOPE = "Scope"
    TABLE_HEADER_CREATED = "Created"
