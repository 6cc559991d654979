# /// script
# requires-python = ">=3.13"
# dependencies = [
#   "requests",
#   "pandas",
# ]
# ///
"""Core Web Vitals Checker CLI Tool.

Queries the Chrome UX Report (CrUX) API for up to four domains or URLs,
scores the p75 field metrics against the Core Web Vitals thresholds and
renders the results as terminal cards, CSV/JSON data files or a
self-contained HTML dashboard.
"""

from __future__ import annotations

import argparse
import json
import math
import os
import re
import sys
import tomllib
import webbrowser
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from html import escape
from pathlib import Path
from types import MappingProxyType
from typing import ClassVar, NamedTuple

import pandas as pd
import requests

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CRUX_API_URL = "https://chromeuxreport.googleapis.com/v1/records:queryRecord"

QUERY_TYPE_ORIGIN = "origin"
QUERY_TYPE_URL = "url"
VALID_QUERY_TYPES = (QUERY_TYPE_ORIGIN, QUERY_TYPE_URL)
VALID_FORM_FACTORS = ("DESKTOP", "PHONE")
VALID_OUTPUT_FORMATS = ("csv", "json", "both")

DEFAULT_QUERY_TYPE = QUERY_TYPE_ORIGIN
DEFAULT_FORM_FACTOR = "PHONE"
DEFAULT_OUTPUT_DIR = "./reports"
DEFAULT_TIMEOUT = 30.0

MAX_DOMAINS = 4

CONFIG_FILENAMES = ["crux.toml"]
CONFIG_SEARCH_PATHS = [
    Path.cwd(),
    Path.home() / ".config" / "crux-vitals",
]

SCHEME_PATTERN = re.compile(r"^https?://")

BAND_GOOD = "good"
BAND_NEEDS_IMPROVEMENT = "needs-improvement"
BAND_POOR = "poor"
BAND_UNKNOWN = "unknown"

BAND_LABELS = {
    BAND_GOOD: "GOOD",
    BAND_NEEDS_IMPROVEMENT: "NEEDS IMPROVEMENT",
    BAND_POOR: "POOR",
    BAND_UNKNOWN: "N/A",
}

BAND_COLORS = {
    BAND_GOOD: "#0cce6b",
    BAND_NEEDS_IMPROVEMENT: "#ffa400",
    BAND_POOR: "#ff4e42",
    BAND_UNKNOWN: "#999",
}

# Width of each band on the value bar, in percent
BAND_WIDTH = 33.33
POOR_BAND_START = 66.66

UNIT_MILLISECOND = "millisecond"
UNIT_UNITLESS = "unitless"

ERROR_PREFIX = "Could not fetch Core Web Vitals. "

# (substring in the raw error, message shown to the user)
KNOWN_ERROR_MESSAGES = [
    ("API key not found", "API key is missing. Please check your environment setup."),
    ("Invalid Value", "Please enter valid domain names (e.g., example.com)."),
    ("No data found", "No Core Web Vitals data available for these domains."),
]
OFFLINE_MESSAGE = "Please check your internet connection."


class Metric(Enum):
    """Field metrics read from a CrUX record, valued by their display label."""

    LCP = "LCP"
    CLS = "CLS"
    INP = "INP"
    TTFB = "TTFB"
    IMAGE_TTFB = "Image TTFB"

    @property
    def column_prefix(self) -> str:
        return self.name.lower()


class Threshold(NamedTuple):
    good: float
    poor: float


# Path below record.metrics; percentiles.p75 is appended when reading
METRIC_SOURCE_PATHS = MappingProxyType({
    Metric.LCP: ("largest_contentful_paint",),
    Metric.CLS: ("cumulative_layout_shift",),
    Metric.INP: ("interaction_to_next_paint",),
    Metric.TTFB: ("experimental_time_to_first_byte",),
    Metric.IMAGE_TTFB: ("largest_contentful_paint_element", "ttfb"),
})

METRIC_UNITS = MappingProxyType({
    Metric.LCP: UNIT_MILLISECOND,
    Metric.CLS: UNIT_UNITLESS,
    Metric.INP: UNIT_MILLISECOND,
    Metric.TTFB: UNIT_MILLISECOND,
    Metric.IMAGE_TTFB: UNIT_MILLISECOND,
})

# LCP thresholds are in seconds, CLS is unitless, the rest are milliseconds
THRESHOLDS = MappingProxyType({
    Metric.LCP: Threshold(good=2.5, poor=4.0),
    Metric.CLS: Threshold(good=0.1, poor=0.25),
    Metric.INP: Threshold(good=200, poor=500),
    Metric.TTFB: Threshold(good=800, poor=1800),
    Metric.IMAGE_TTFB: Threshold(good=800, poor=1800),
})

METRIC_DESCRIPTIONS = MappingProxyType({
    Metric.LCP: "Largest Contentful Paint measures loading performance",
    Metric.CLS: "Cumulative Layout Shift measures visual stability",
    Metric.INP: "Interaction to Next Paint measures responsiveness",
    Metric.TTFB: "Time to First Byte measures server response time",
    Metric.IMAGE_TTFB: "Time to First Byte for the LCP image",
})

# Metrics drawn on the per-domain comparison chart
CHART_METRICS = (Metric.LCP, Metric.CLS, Metric.INP, Metric.TTFB)
CHART_COLORS = {
    Metric.LCP: "#646cff",
    Metric.CLS: "#ffb300",
    Metric.INP: "#00bfae",
    Metric.TTFB: "#d32f2f",
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class CruxError(Exception):
    """Base class for errors that abort a submission."""


class ValidationError(CruxError):
    """Raised when the entered domains or settings are unusable."""


class CruxApiError(CruxError):
    """Raised when the CrUX API answers with a non-success status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CruxTransportError(CruxError):
    """Raised when the request never got an HTTP answer."""

    def __init__(self, message: str, offline: bool = False):
        super().__init__(message)
        self.offline = offline


# ---------------------------------------------------------------------------
# Data Model
# ---------------------------------------------------------------------------


class MetricSample(NamedTuple):
    name: Metric
    raw_value: float | None
    unit: str


@dataclass(frozen=True)
class ScoredMetric:
    name: Metric
    value: float | None
    band: str
    bar_percentage: float


@dataclass(frozen=True)
class DomainResult:
    """Scored metrics for one domain plus the untouched API response."""

    metrics: dict[Metric, ScoredMetric] = field(default_factory=dict)
    raw_response: dict = field(default_factory=dict)


@dataclass(frozen=True)
class QueryTarget:
    """What a request asks about; subclasses name the wire field."""

    value: str
    field_name: ClassVar[str] = ""

    def to_payload(self, form_factor: str) -> dict:
        return {"formFactor": form_factor, self.field_name: self.value}


@dataclass(frozen=True)
class Origin(QueryTarget):
    field_name: ClassVar[str] = QUERY_TYPE_ORIGIN


@dataclass(frozen=True)
class Url(QueryTarget):
    field_name: ClassVar[str] = QUERY_TYPE_URL


# ---------------------------------------------------------------------------
# Config & Profile
# ---------------------------------------------------------------------------


def discover_config_path() -> Path | None:
    """Find the first existing config file in search paths."""
    for search_dir in CONFIG_SEARCH_PATHS:
        for filename in CONFIG_FILENAMES:
            candidate = search_dir / filename
            if candidate.is_file():
                return candidate
    return None


def load_config(config_path: Path | None) -> dict:
    """Parse a TOML config file and return its contents as a dict."""
    if config_path is None:
        return {}
    try:
        with open(config_path, "rb") as fh:
            return tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        print(f"Error: malformed config file {config_path}: {exc}", file=sys.stderr)
        sys.exit(1)
    except OSError as exc:
        print(f"Error: cannot read config file {config_path}: {exc}", file=sys.stderr)
        sys.exit(1)


def apply_profile(args: argparse.Namespace, config: dict, profile_name: str | None) -> argparse.Namespace:
    """Merge config [settings] and optional profile into args.

    Resolution order (highest priority wins):
      1. Explicit CLI flags
      2. Profile values
      3. [settings] defaults from config
      4. Built-in defaults (already in args)
    """
    settings = config.get("settings", {})
    profile = {}
    if profile_name:
        profiles = config.get("profiles", {})
        if profile_name not in profiles:
            available = ", ".join(profiles.keys()) if profiles else "(none)"
            print(
                f"Error: profile '{profile_name}' not found in config. Available: {available}",
                file=sys.stderr,
            )
            sys.exit(1)
        profile = profiles[profile_name]

    config_key_map = {
        "api_key": "api_key",
        "domains_file": "file",
        "query_type": "query_type",
        "form_factor": "form_factor",
        "output_format": "output_format",
        "output_dir": "output_dir",
        "timeout": "timeout",
        "verbose": "verbose",
    }

    cli_explicit = set(getattr(args, "_explicit_args", []))

    for config_key, arg_dest in config_key_map.items():
        if arg_dest in cli_explicit:
            continue
        if config_key in profile:
            setattr(args, arg_dest, profile[config_key])
        elif config_key in settings:
            setattr(args, arg_dest, settings[config_key])

    if not getattr(args, "api_key", None):
        env_key = os.environ.get("CRUX_API_KEY")
        if env_key:
            args.api_key = env_key

    return args


def resolve_query_config(args: argparse.Namespace) -> tuple[str, str]:
    """Return (query_type, form_factor), exiting on values no flag would accept."""
    query_type = str(getattr(args, "query_type", DEFAULT_QUERY_TYPE)).lower()
    form_factor = str(getattr(args, "form_factor", DEFAULT_FORM_FACTOR)).upper()
    if query_type not in VALID_QUERY_TYPES:
        print(f"Error: invalid query type '{query_type}'. Use origin or url.", file=sys.stderr)
        sys.exit(1)
    if form_factor not in VALID_FORM_FACTORS:
        print(f"Error: invalid form factor '{form_factor}'. Use DESKTOP or PHONE.", file=sys.stderr)
        sys.exit(1)
    return query_type, form_factor


def resolve_run_options(args: argparse.Namespace) -> argparse.Namespace:
    """Check timeout, output_format and verbose after config merging.

    Values may come from TOML, so each is checked for type as well as range.
    Normalized values are written back onto args.
    """
    raw_timeout = getattr(args, "timeout", DEFAULT_TIMEOUT)
    timeout = coerce_timeout(raw_timeout)
    if timeout is None:
        print(f"Error: invalid timeout {raw_timeout!r}. Use a number of seconds greater than 0.", file=sys.stderr)
        sys.exit(1)
    args.timeout = timeout

    output_format = getattr(args, "output_format", None)
    if output_format is not None:
        normalized_format = str(output_format).lower()
        if normalized_format not in VALID_OUTPUT_FORMATS:
            print(
                f"Error: invalid output format '{output_format}'. Use one of: {', '.join(VALID_OUTPUT_FORMATS)}.",
                file=sys.stderr,
            )
            sys.exit(1)
        args.output_format = normalized_format

    verbose = getattr(args, "verbose", False)
    if not isinstance(verbose, bool):
        print(f"Error: invalid verbose setting {verbose!r}. Use true or false.", file=sys.stderr)
        sys.exit(1)
    args.verbose = verbose

    return args


# ---------------------------------------------------------------------------
# CLI Argument Parser
# ---------------------------------------------------------------------------


class TrackingAction(argparse.Action):
    """Argparse action that records which flags were explicitly provided."""

    def __call__(self, parser, namespace, values, option_string=None):
        setattr(namespace, self.dest, values)
        explicit = getattr(namespace, "_explicit_args", [])
        explicit.append(self.dest)
        namespace._explicit_args = explicit


class TrackingStoreTrueAction(argparse.Action):
    """Like store_true but tracks that the flag was explicitly set."""

    def __init__(self, option_strings, dest, default=False, required=False, help=None):
        super().__init__(option_strings=option_strings, dest=dest, nargs=0, const=True, default=default, required=required, help=help)

    def __call__(self, parser, namespace, values, option_string=None):
        setattr(namespace, self.dest, True)
        explicit = getattr(namespace, "_explicit_args", [])
        explicit.append(self.dest)
        namespace._explicit_args = explicit


def positive_float(text: str) -> float:
    """Argparse type for a finite number greater than zero."""
    value = coerce_timeout(text)
    if value is None:
        raise argparse.ArgumentTypeError(f"must be a number greater than 0, got '{text}'")
    return value


def _add_query_arguments(subparser: argparse.ArgumentParser) -> None:
    """Flags shared by every subcommand that runs a submission."""
    subparser.add_argument("domains", nargs="*", default=[], help=f"Domains or URLs to check (up to {MAX_DOMAINS})")
    subparser.add_argument("-f", "--file", dest="file", action=TrackingAction, default=None, help="File with one domain or URL per line")
    subparser.add_argument("-q", "--query-type", dest="query_type", action=TrackingAction, type=str.lower, default=DEFAULT_QUERY_TYPE, choices=VALID_QUERY_TYPES, help="Data scope: origin or url")
    subparser.add_argument("-F", "--form-factor", dest="form_factor", action=TrackingAction, type=str.upper, default=DEFAULT_FORM_FACTOR, choices=VALID_FORM_FACTORS, help="Device form factor: DESKTOP or PHONE")
    subparser.add_argument("-t", "--timeout", dest="timeout", action=TrackingAction, type=positive_float, default=DEFAULT_TIMEOUT, help="Seconds to wait for each API response")
    subparser.add_argument("--output-dir", dest="output_dir", action=TrackingAction, default=DEFAULT_OUTPUT_DIR, help="Directory for auto-named output files")
    subparser.add_argument("-o", "--output", dest="output", action=TrackingAction, default=None, help="Explicit output file path (overrides auto-naming)")


def build_argument_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="crux-vitals",
        description="Core Web Vitals Checker (Chrome UX Report field data)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--api-key", dest="api_key", action=TrackingAction, default=None, help="Google API key (or set CRUX_API_KEY env var)")
    parser.add_argument("-c", "--config", dest="config", action=TrackingAction, default=None, help="Path to config TOML file")
    parser.add_argument("-p", "--profile", dest="profile", action=TrackingAction, default=None, help="Named profile from config file")
    parser.add_argument("-v", "--verbose", dest="verbose", action=TrackingStoreTrueAction, default=False, help="Verbose output to stderr")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # --- check ---
    check_parser = subparsers.add_parser("check", help="Score domains and print metric cards")
    _add_query_arguments(check_parser)
    check_parser.add_argument("--output-format", dest="output_format", action=TrackingAction, default=None, choices=VALID_OUTPUT_FORMATS, help="Also write results as csv, json, or both")
    check_parser.add_argument("--raw", dest="raw", action=TrackingStoreTrueAction, default=False, help="Print the raw API response for each domain")

    # --- report ---
    report_parser = subparsers.add_parser("report", help="Score domains and write an HTML dashboard")
    _add_query_arguments(report_parser)
    report_parser.add_argument("--open", dest="open_browser", action=TrackingStoreTrueAction, default=False, help="Auto-open report in browser")

    return parser


# ---------------------------------------------------------------------------
# Domain Input
# ---------------------------------------------------------------------------


def load_domains(domain_args: list[str], file_path: str | None, allow_stdin: bool = True) -> list[str]:
    """Load entries from positional args, file, or stdin, in the order given."""
    raw_entries: list[str] = []

    if domain_args:
        raw_entries.extend(domain_args)
    elif file_path:
        path = Path(file_path)
        if not path.is_file():
            print(f"Error: domains file not found: {file_path}", file=sys.stderr)
            sys.exit(1)
        raw_entries.extend(path.read_text().splitlines())
    elif allow_stdin and not sys.stdin.isatty():
        raw_entries.extend(sys.stdin.read().splitlines())

    seen: set[str] = set()
    entries: list[str] = []
    for raw in raw_entries:
        entry = raw.strip()
        if not entry or entry.startswith("#"):
            continue
        if entry not in seen:
            seen.add(entry)
            entries.append(entry)

    if not entries:
        print("Error: no domains provided.", file=sys.stderr)
        sys.exit(1)

    return entries


def validate_entries(entries: list[str]) -> list[str]:
    """Drop blank entries and enforce the per-submission limit."""
    domains = [entry for entry in entries if entry.strip()]
    if not domains:
        raise ValidationError("Invalid Value: enter at least one domain")
    if len(domains) > MAX_DOMAINS:
        raise ValidationError(
            f"Too many domains: {len(domains)} given, at most {MAX_DOMAINS} per check"
        )
    return domains


# ---------------------------------------------------------------------------
# Query Builder
# ---------------------------------------------------------------------------


def build_query_target(entry: str, query_type: str) -> QueryTarget:
    """Normalize a user entry into an Origin or Url target.

    Origin mode keeps only the host, so the API never sees a path.
    Any other query type is treated as a full URL.
    """
    if query_type == QUERY_TYPE_ORIGIN:
        host = SCHEME_PATTERN.sub("", entry, count=1).split("/")[0]
        return Origin(f"https://{host}")
    if entry.startswith(("http://", "https://")):
        return Url(entry)
    return Url(f"https://{entry}")


def build_request(entry: str, query_type: str, form_factor: str) -> dict:
    """Build the queryRecord request body for one entry."""
    return build_query_target(entry, query_type).to_payload(form_factor)


# ---------------------------------------------------------------------------
# API Client
# ---------------------------------------------------------------------------


def fetch_crux_record(
    payload: dict,
    api_key: str,
    domain: str,
    timeout: float = DEFAULT_TIMEOUT,
    session: requests.Session | None = None,
) -> dict:
    """POST one queryRecord request and return the decoded JSON body."""
    http = session if session is not None else requests
    try:
        response = http.post(
            CRUX_API_URL,
            params={"key": api_key},
            json=payload,
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
    except requests.ConnectionError as exc:
        raise CruxTransportError(f"Network error for {domain}: {exc}", offline=True) from exc
    except requests.RequestException as exc:
        raise CruxTransportError(f"Network error for {domain}: {exc}") from exc

    try:
        data = response.json()
    except ValueError:
        data = None

    if not 200 <= response.status_code < 300:
        error_detail = None
        if isinstance(data, dict):
            error_detail = (data.get("error") or {}).get("message")
        raise CruxApiError(
            f"API Error for {domain}: {error_detail or 'Failed to fetch data'}",
            status_code=response.status_code,
        )

    if not isinstance(data, dict):
        raise CruxApiError(
            f"API Error for {domain}: response was not a JSON object",
            status_code=response.status_code,
        )
    return data


# ---------------------------------------------------------------------------
# Metrics Extraction & Scoring
# ---------------------------------------------------------------------------


def coerce_float(value: object) -> float | None:
    """Turn a number or numeric string into a float, anything else into None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


def coerce_timeout(value: object) -> float | None:
    """A request timeout in seconds, or None unless it is finite and above zero."""
    number = coerce_float(value)
    if number is None or number <= 0:
        return None
    return number


def _dig(data: object, keys: tuple[str, ...]) -> object:
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def extract_samples(raw_response: dict) -> list[MetricSample]:
    """Read the p75 value of every known metric; absent data yields None."""
    metrics = _dig(raw_response, ("record", "metrics"))
    samples = []
    for metric, source_path in METRIC_SOURCE_PATHS.items():
        raw_value = _dig(metrics, source_path + ("percentiles", "p75"))
        samples.append(MetricSample(metric, coerce_float(raw_value), METRIC_UNITS[metric]))
    return samples


def comparison_value(metric: Metric, value: float) -> float:
    """Express a value in the unit its thresholds use (LCP: ms to seconds)."""
    if metric is Metric.LCP:
        return value / 1000
    return value


def classify_value(metric: Metric, value: float | None) -> str:
    if value is None:
        return BAND_UNKNOWN
    normalized = comparison_value(metric, value)
    threshold = THRESHOLDS[metric]
    if normalized <= threshold.good:
        return BAND_GOOD
    if normalized <= threshold.poor:
        return BAND_NEEDS_IMPROVEMENT
    return BAND_POOR


def bar_percentage(metric: Metric, value: float | None) -> float:
    """Position of a value on a bar split into three equal bands.

    The poor band scales by the poor threshold itself and is capped at 100.
    Negative values pin to 0.
    """
    if not value:
        return 0.0
    normalized = comparison_value(metric, value)
    threshold = THRESHOLDS[metric]
    if normalized <= threshold.good:
        return max(0.0, (normalized / threshold.good) * BAND_WIDTH)
    if normalized <= threshold.poor:
        return BAND_WIDTH + ((normalized - threshold.good) / (threshold.poor - threshold.good)) * BAND_WIDTH
    return min(100, POOR_BAND_START + ((normalized - threshold.poor) / threshold.poor) * BAND_WIDTH)


def score_metric(metric: Metric, value: float | None) -> ScoredMetric:
    return ScoredMetric(
        name=metric,
        value=value,
        band=classify_value(metric, value),
        bar_percentage=bar_percentage(metric, value),
    )


def score_response(raw_response: dict) -> DomainResult:
    """Score every metric present in a queryRecord response.

    Metrics without a usable p75 are left out of the mapping.
    """
    scored = {}
    for sample in extract_samples(raw_response):
        if sample.raw_value is None:
            continue
        scored[sample.name] = score_metric(sample.name, sample.raw_value)
    return DomainResult(metrics=scored, raw_response=raw_response)


def format_value(metric: Metric, value: float | None) -> str:
    if value is None:
        return "N/A"
    if metric is Metric.CLS:
        return f"{value:.3f}"
    return f"{value:.0f}ms"


def format_summary_value(metric_key: str, value: object) -> str:
    """Format a raw record metric for the aggregate view (LCP in seconds)."""
    number = coerce_float(value)
    if number is None:
        return "N/A"
    if metric_key == METRIC_SOURCE_PATHS[Metric.LCP][0]:
        return f"{number / 1000:.2f}s"
    if metric_key == METRIC_SOURCE_PATHS[Metric.CLS][0]:
        return f"{number:.2f}"
    return f"{number:.0f}ms"


def summarize_raw_metrics(raw_response: dict) -> list[dict]:
    """List every metric in a raw record with its p75 formatted for display."""
    metrics = _dig(raw_response, ("record", "metrics"))
    if not isinstance(metrics, dict):
        return []
    summary = []
    for key, data in metrics.items():
        p75 = _dig(data, ("percentiles", "p75"))
        summary.append({
            "key": key,
            "title": key.replace("_", " ").upper(),
            "display": format_summary_value(key, p75),
        })
    return summary


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


def check_domains(
    entries: list[str],
    query_type: str,
    form_factor: str,
    api_key: str | None,
    timeout: float = DEFAULT_TIMEOUT,
    verbose: bool = False,
    session: requests.Session | None = None,
) -> dict[str, DomainResult]:
    """Fetch and score each entry in order.

    The first failure propagates, so no partial result set is ever returned.
    """
    domains = validate_entries(entries)
    if not api_key:
        raise ValidationError("API key not found (use --api-key or set CRUX_API_KEY)")
    if coerce_timeout(timeout) is None:
        raise ValidationError(f"Timeout must be a number of seconds greater than 0, got {timeout!r}")

    results: dict[str, DomainResult] = {}
    for domain in domains:
        target = build_query_target(domain, query_type)
        if verbose:
            print(f"  Fetching {target.value} ({form_factor})...", file=sys.stderr)
        data = fetch_crux_record(target.to_payload(form_factor), api_key, domain, timeout=timeout, session=session)
        results[domain] = score_response(data)
    return results


def describe_error(exc: Exception) -> str:
    """Map a submission failure to one human-readable message."""
    message = str(exc)
    for needle, friendly in KNOWN_ERROR_MESSAGES:
        if needle in message:
            return ERROR_PREFIX + friendly
    if isinstance(exc, CruxTransportError) and exc.offline:
        return ERROR_PREFIX + OFFLINE_MESSAGE
    return ERROR_PREFIX + message


def run_submission(
    entries: list[str],
    query_type: str,
    form_factor: str,
    api_key: str | None,
    timeout: float = DEFAULT_TIMEOUT,
    verbose: bool = False,
    session: requests.Session | None = None,
) -> tuple[dict[str, DomainResult], str | None]:
    """Run one submission; returns (results, None) or ({}, error message)."""
    try:
        results = check_domains(
            entries,
            query_type,
            form_factor,
            api_key,
            timeout=timeout,
            verbose=verbose,
            session=session,
        )
    except CruxError as exc:
        return {}, describe_error(exc)
    return results, None


# ---------------------------------------------------------------------------
# Output Formats
# ---------------------------------------------------------------------------


def results_to_dataframe(results: dict[str, DomainResult]) -> pd.DataFrame:
    """Flatten results into one row per domain, in submission order."""
    rows = []
    for domain, domain_result in results.items():
        row: dict[str, object] = {"domain": domain}
        for metric in Metric:
            scored = domain_result.metrics.get(metric)
            prefix = metric.column_prefix
            row[f"{prefix}_value"] = scored.value if scored else None
            row[f"{prefix}_band"] = scored.band if scored else None
            row[f"{prefix}_bar_pct"] = round(scored.bar_percentage, 2) if scored else None
        rows.append(row)
    return pd.DataFrame(rows)


def generate_output_path(output_dir: str, label: str, extension: str) -> Path:
    """Generate a timestamped output file path."""
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    dir_path = Path(output_dir)
    dir_path.mkdir(parents=True, exist_ok=True)
    return dir_path / f"{timestamp}-{label}.{extension}"


def output_csv(dataframe: pd.DataFrame, output_path: Path) -> str:
    """Write DataFrame to CSV. Returns the file path."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    dataframe.to_csv(output_path, index=False)
    return str(output_path)


def output_json(
    results: dict[str, DomainResult],
    output_path: Path,
    query_type: str,
    form_factor: str,
) -> str:
    """Write results to structured JSON with metadata. Returns the file path."""
    output_path.parent.mkdir(parents=True, exist_ok=True)

    records = []
    for domain, domain_result in results.items():
        records.append({
            "domain": domain,
            "metrics": {
                metric.value: {
                    "value": scored.value,
                    "display": format_value(metric, scored.value),
                    "band": scored.band,
                    "bar_percentage": round(scored.bar_percentage, 2),
                }
                for metric, scored in domain_result.metrics.items()
            },
            "raw_response": domain_result.raw_response,
        })

    output_data = {
        "metadata": {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "query_type": query_type,
            "form_factor": form_factor,
            "total_domains": len(results),
            "tool_version": __version__,
        },
        "results": records,
    }

    with open(output_path, "w") as fh:
        json.dump(output_data, fh, indent=2, default=str)

    return str(output_path)


def _write_data_files(
    results: dict[str, DomainResult],
    output_format: str,
    output_dir: str,
    explicit_output: str | None,
    query_type: str,
    form_factor: str,
) -> list[str]:
    """Write CSV and/or JSON data files based on output_format. Returns list of written paths."""
    written_files: list[str] = []
    label = form_factor.lower()

    if output_format in ("csv", "both"):
        if explicit_output:
            csv_path = Path(explicit_output).with_suffix(".csv")
        else:
            csv_path = generate_output_path(output_dir, label, "csv")
        written_files.append(output_csv(results_to_dataframe(results), csv_path))

    if output_format in ("json", "both"):
        if explicit_output:
            json_path = Path(explicit_output).with_suffix(".json")
        else:
            json_path = generate_output_path(output_dir, label, "json")
        written_files.append(output_json(results, json_path, query_type, form_factor))

    print(f"\nResults written to:", file=sys.stderr)
    for filepath in written_files:
        print(f"  {filepath}", file=sys.stderr)

    return written_files


def count_bands(dataframe: pd.DataFrame) -> pd.Series:
    """Count good/needs-improvement/poor across every metric of every domain."""
    band_columns = [col for col in dataframe.columns if col.endswith("_band")]
    if dataframe.empty or not band_columns:
        return pd.Series(dtype=int)
    return dataframe[band_columns].melt()["value"].value_counts()


def _print_check_summary(dataframe: pd.DataFrame) -> None:
    """Print domain count and band totals across all metrics to stderr."""
    if dataframe.empty:
        return
    band_counts = count_bands(dataframe)

    print(f"\nSummary:", file=sys.stderr)
    print(f"  Domains checked:   {len(dataframe)}", file=sys.stderr)
    for band in (BAND_GOOD, BAND_NEEDS_IMPROVEMENT, BAND_POOR):
        label = BAND_LABELS[band].title() + ":"
        print(f"  {label:<18} {int(band_counts.get(band, 0))}", file=sys.stderr)


def render_text_bar(percentage: float, width: int = 30) -> str:
    """Draw a value bar with '|' ticks at the band boundaries."""
    filled = round(max(0.0, min(100.0, percentage)) / 100 * width)
    cells = ["#" if index < filled else "." for index in range(width)]
    for boundary in (BAND_WIDTH, POOR_BAND_START):
        tick = round(boundary / 100 * width)
        if tick >= filled:
            cells[tick] = "|"
    return "[" + "".join(cells) + "]"


def format_terminal_table(results: dict[str, DomainResult]) -> str:
    """Format results as one block of metric cards per domain."""
    lines = []
    for domain, domain_result in results.items():
        lines.append(f"\n{'=' * 60}")
        lines.append(f"  Domain:   {domain}")
        lines.append(f"{'=' * 60}")

        if not domain_result.metrics:
            lines.append("  No Core Web Vitals data in response")
            continue

        for metric, scored in domain_result.metrics.items():
            label = f"  {metric.value} "
            value_display = format_value(metric, scored.value)
            band_label = BAND_LABELS[scored.band]
            lines.append(
                f"  {label:.<24} {value_display:>9}  {render_text_bar(scored.bar_percentage)}  {band_label}"
            )

    return "\n".join(lines)


# ---------------------------------------------------------------------------
# HTML Report
# ---------------------------------------------------------------------------


def _metric_card_html(metric: Metric, scored: ScoredMetric) -> str:
    width = f"{scored.bar_percentage:.2f}"
    return f"""
            <div class="vital-metric-row">
                <div class="metric-info">
                    <span class="metric-name" title="{escape(METRIC_DESCRIPTIONS[metric])}">{metric.value}</span>
                    <span class="metric-value {scored.band}">{format_value(metric, scored.value)}</span>
                </div>
                <div class="metric-bar-container">
                    <div class="threshold" style="left: {BAND_WIDTH}%;"></div>
                    <div class="threshold" style="left: {POOR_BAND_START}%;"></div>
                    <div class="value-bar {scored.band}" style="width: {width}%;"></div>
                </div>
            </div>"""


def _vitals_chart_html(domain_result: DomainResult) -> str:
    """Bar chart of LCP, CLS, INP and TTFB scaled to the largest of them."""
    values = {}
    for metric in CHART_METRICS:
        scored = domain_result.metrics.get(metric)
        values[metric] = scored.value if scored else 0
    max_value = max(values.values())

    rows = []
    for metric, value in values.items():
        width = max(0.0, (value / max_value) * 100) if max_value > 0 else 0
        scored = domain_result.metrics.get(metric)
        label = format_value(metric, scored.value) if scored else "N/A"
        rows.append(f"""
                <div class="chart-row">
                    <span class="chart-label">{metric.value}</span>
                    <div class="chart-bar-bg">
                        <div class="chart-bar" style="width: {width:.2f}%; background: {CHART_COLORS[metric]};"><span class="chart-value">{label}</span></div>
                    </div>
                </div>""")
    return "\n".join(rows)


def _api_summary_html(raw_response: dict) -> str:
    """Aggregate view: every metric in the raw record, LCP in seconds."""
    cards = []
    for item in summarize_raw_metrics(raw_response):
        cards.append(f"""
                <div class="api-metric-card">
                    <div class="api-metric-title">{escape(item["title"])}</div>
                    <div class="api-metric-value">{item["display"]}</div>
                </div>""")
    if not cards:
        return ""
    cards_html = "\n".join(cards)
    return f"""
            <h3>API Metrics Summary</h3>
            <div class="api-metrics-grid">
                {cards_html}
            </div>"""


def generate_html_report(results: dict[str, DomainResult], query_type: str, form_factor: str) -> str:
    """Generate a self-contained HTML dashboard from scored results."""
    generated_at = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    band_counts = count_bands(results_to_dataframe(results))

    cards_html = "".join(
        f'<div class="card"><div class="value {band}">{int(band_counts.get(band, 0))}</div>'
        f'<div class="label">{BAND_LABELS[band].title()}</div></div>'
        for band in (BAND_GOOD, BAND_NEEDS_IMPROVEMENT, BAND_POOR)
    )

    domain_sections = []
    for domain, domain_result in results.items():
        if domain_result.metrics:
            metric_rows = "\n".join(
                _metric_card_html(metric, scored) for metric, scored in domain_result.metrics.items()
            )
        else:
            metric_rows = '<p class="empty">No Core Web Vitals data in response</p>'
        raw_json = escape(json.dumps(domain_result.raw_response, indent=2, default=str))
        domain_sections.append(f"""
        <div class="domain-results">
            <h2 class="domain-title">{escape(domain)}</h2>
            <div class="metrics-list">
                {metric_rows}
            </div>
            <div class="vitals-chart">
                {_vitals_chart_html(domain_result)}
            </div>
            {_api_summary_html(domain_result.raw_response)}
            <details>
                <summary>Show raw API response</summary>
                <pre>{raw_json}</pre>
            </details>
        </div>""")
    domain_sections_html = "\n".join(domain_sections)

    html = f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>Core Web Vitals Report - {generated_at}</title>
<style>
    * {{ margin: 0; padding: 0; box-sizing: border-box; }}
    body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; background: #f5f5f5; color: #333; padding: 20px; max-width: 1400px; margin: 0 auto; }}
    h1 {{ font-size: 1.5rem; margin-bottom: 5px; }}
    h2 {{ font-size: 1.2rem; margin-bottom: 15px; color: #555; }}
    h3 {{ font-size: 1rem; margin: 20px 0 10px; color: #555; }}
    .meta {{ color: #888; font-size: 0.85rem; margin-bottom: 25px; }}
    .cards {{ display: grid; grid-template-columns: repeat(auto-fit, minmax(180px, 1fr)); gap: 15px; margin-bottom: 30px; }}
    .card {{ background: #fff; border-radius: 8px; padding: 20px; box-shadow: 0 1px 3px rgba(0,0,0,0.1); text-align: center; }}
    .card .value {{ font-size: 2rem; font-weight: 700; }}
    .card .label {{ font-size: 0.8rem; color: #888; margin-top: 5px; }}
    .good {{ color: #0cce6b; }}
    .needs-improvement {{ color: #ffa400; }}
    .poor {{ color: #ff4e42; }}
    .results-grid {{ display: grid; grid-template-columns: repeat(auto-fit, minmax(320px, 1fr)); gap: 20px; }}
    .domain-results {{ background: #fff; border-radius: 8px; padding: 20px; box-shadow: 0 1px 3px rgba(0,0,0,0.1); }}
    .vital-metric-row {{ margin-bottom: 14px; }}
    .metric-info {{ display: flex; justify-content: space-between; font-size: 0.9rem; margin-bottom: 4px; }}
    .metric-name {{ font-weight: 600; cursor: help; }}
    .metric-value {{ font-weight: 700; }}
    .metric-bar-container {{ position: relative; background: #eee; border-radius: 4px; height: 10px; }}
    .threshold {{ position: absolute; top: -3px; width: 2px; height: 16px; background: #bbb; }}
    .value-bar {{ height: 100%; border-radius: 4px; }}
    .value-bar.good {{ background: {BAND_COLORS[BAND_GOOD]}; }}
    .value-bar.needs-improvement {{ background: {BAND_COLORS[BAND_NEEDS_IMPROVEMENT]}; }}
    .value-bar.poor {{ background: {BAND_COLORS[BAND_POOR]}; }}
    .vitals-chart {{ margin-top: 20px; }}
    .chart-row {{ display: flex; align-items: center; margin-bottom: 8px; }}
    .chart-label {{ width: 60px; font-size: 0.8rem; }}
    .chart-bar-bg {{ flex: 1; background: #eee; border-radius: 4px; height: 22px; }}
    .chart-bar {{ height: 100%; border-radius: 4px; color: #fff; font-size: 0.75rem; font-weight: 700; display: flex; align-items: center; justify-content: flex-end; padding-right: 6px; min-width: 40px; }}
    .api-metrics-grid {{ display: grid; grid-template-columns: repeat(auto-fit, minmax(140px, 1fr)); gap: 10px; }}
    .api-metric-card {{ background: #f8f9fa; border-radius: 6px; padding: 10px; }}
    .api-metric-title {{ font-size: 0.7rem; color: #666; }}
    .api-metric-value {{ font-size: 1.1rem; font-weight: 700; }}
    .empty {{ color: #999; font-style: italic; }}
    details {{ margin-top: 15px; }}
    summary {{ cursor: pointer; user-select: none; }}
    pre {{ font-size: 0.8rem; background: #f4f4f4; padding: 10px; border-radius: 4px; overflow-x: auto; margin-top: 10px; }}
    footer {{ margin-top: 40px; padding-top: 15px; border-top: 1px solid #ddd; color: #999; font-size: 0.75rem; text-align: center; }}
</style>
</head>
<body>
<h1>Core Web Vitals Report</h1>
<p class="meta">Generated: {generated_at} | Data scope: {query_type} | Form factor: {form_factor} | Tool v{__version__}</p>

<div class="cards">
    <div class="card"><div class="value">{len(results)}</div><div class="label">Domains Checked</div></div>
    {cards_html}
</div>

<div class="results-grid">
    {domain_sections_html}
</div>

<footer>
    Generated by Core Web Vitals Checker v{__version__} from Chrome UX Report field data (p75)
</footer>
</body>
</html>"""
    return html


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def _run_from_args(args: argparse.Namespace) -> tuple[dict[str, DomainResult], str, str]:
    """Shared front half of check/report: load entries, run, exit on failure."""
    entries = load_domains(getattr(args, "domains", []), getattr(args, "file", None))
    query_type, form_factor = resolve_query_config(args)
    args = resolve_run_options(args)

    print(f"Checking {len(entries)} domain(s) by {query_type} ({form_factor})", file=sys.stderr)
    results, error_message = run_submission(
        entries,
        query_type,
        form_factor,
        getattr(args, "api_key", None),
        timeout=args.timeout,
        verbose=args.verbose,
    )
    if error_message:
        print(f"Error: {error_message}", file=sys.stderr)
        sys.exit(1)
    return results, query_type, form_factor


def cmd_check(args: argparse.Namespace) -> None:
    """Score the given domains and print metric cards to stdout."""
    results, query_type, form_factor = _run_from_args(args)

    print(format_terminal_table(results))
    if getattr(args, "raw", False):
        for domain, domain_result in results.items():
            print(f"\n--- Raw API response: {domain} ---")
            print(json.dumps(domain_result.raw_response, indent=2))

    output_format = getattr(args, "output_format", None)
    if output_format:
        _write_data_files(
            results,
            output_format,
            getattr(args, "output_dir", DEFAULT_OUTPUT_DIR),
            getattr(args, "output", None),
            query_type,
            form_factor,
        )
    _print_check_summary(results_to_dataframe(results))


def cmd_report(args: argparse.Namespace) -> None:
    """Score the given domains and write the HTML dashboard."""
    results, query_type, form_factor = _run_from_args(args)

    explicit_output = getattr(args, "output", None)
    if explicit_output:
        html_path = Path(explicit_output)
    else:
        html_path = generate_output_path(
            getattr(args, "output_dir", DEFAULT_OUTPUT_DIR), f"{form_factor.lower()}-report", "html"
        )

    html_content = generate_html_report(results, query_type, form_factor)
    html_path.parent.mkdir(parents=True, exist_ok=True)
    html_path.write_text(html_content)
    print(f"HTML report written to: {html_path}", file=sys.stderr)

    if getattr(args, "open_browser", False):
        webbrowser.open(html_path.resolve().as_uri())


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def main() -> None:
    parser = build_argument_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(0)

    config_path = Path(args.config) if args.config else discover_config_path()
    config = load_config(config_path)

    profile_name = getattr(args, "profile", None)
    args = apply_profile(args, config, profile_name)

    commands = {
        "check": cmd_check,
        "report": cmd_report,
    }

    handler = commands.get(args.command)
    if handler:
        handler(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
