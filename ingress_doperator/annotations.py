"""
Annotation merge policies for shared Gateway objects

Every Ingress contributes annotations to the shared Gateway. Values from
different Ingresses are accumulated instead of overwritten, except for our
own control annotations which always take the latest value.
"""

import json
import logging
from typing import Dict, List

from .constants import (
    ANNOTATION_PREFIX,
    LISTENER_SOURCES_ANNOTATION,
    MISMATCHED_CERT_ANNOTATION,
    SOURCE_ANNOTATION,
)

logger = logging.getLogger(__name__)

ListenerSources = Dict[str, Dict[str, str]]


def _split_tokens(value: str, separator: str) -> List[str]:
    return [part.strip() for part in value.split(separator) if part.strip()]


def merge_annotation_values(existing: str, desired: str) -> str:
    """Ordered union of comma-separated values, existing values first"""
    if not existing:
        return desired
    if not desired:
        return existing

    values = []
    seen = set()
    for token in _split_tokens(existing, ',') + _split_tokens(desired, ','):
        if token not in seen:
            values.append(token)
            seen.add(token)

    return ','.join(values)


def merge_certificate_mismatch_annotation(existing: str, desired: str) -> str:
    """Union of semicolon-separated "original->transformed: payload" records"""
    if not existing:
        return desired
    if not desired:
        return existing

    # dict.fromkeys keeps first-seen order while deduplicating
    records = dict.fromkeys(_split_tokens(existing, ';') + _split_tokens(desired, ';'))
    return '; '.join(records)


def merge_annotation_value(existing: str, desired: str, key: str) -> str:
    """Merge a single annotation value according to the policy for its key"""
    if key == MISMATCHED_CERT_ANNOTATION:
        return merge_certificate_mismatch_annotation(existing, desired)
    if key == LISTENER_SOURCES_ANNOTATION:
        return merge_listener_sources(existing, desired)
    if key == SOURCE_ANNOTATION:
        return merge_annotation_values(existing, desired)
    if key.startswith(ANNOTATION_PREFIX):
        # Control annotations are not accumulated
        return desired
    return merge_annotation_values(existing, desired)


def merge_annotations(existing: Dict[str, str], desired: Dict[str, str]) -> None:
    """Merge desired annotations into existing in place"""
    for key, value in desired.items():
        existing[key] = merge_annotation_value(existing.get(key, ''), value, key)


def remove_cert_mismatch_entries(cert_mismatch: str, hostname_mappings: Dict[str, str]) -> str:
    """
    Remove records whose prefix matches "original->transformed:" for any of the
    given hostname mappings. Returns an empty string when nothing remains.
    """
    if not cert_mismatch:
        return ''

    prefixes = tuple(f"{original}->{transformed}:" for original, transformed in hostname_mappings.items())
    remaining = [
        record for record in _split_tokens(cert_mismatch, ';')
        if not (prefixes and record.startswith(prefixes))
    ]
    return '; '.join(remaining)


def remove_annotation_value(value: str, token: str) -> str:
    """Drop a single token from a comma-separated annotation value"""
    return ','.join(part for part in _split_tokens(value, ',') if part != token)


def parse_listener_sources(value: str) -> ListenerSources:
    """Decode the listener-sources record; a malformed record counts as empty"""
    if not value:
        return {}
    try:
        record = json.loads(value)
    except ValueError:
        logger.warning(f"Ignoring malformed {LISTENER_SOURCES_ANNOTATION} annotation: {value!r}")
        return {}
    if not isinstance(record, dict):
        return {}
    return {
        identity: {str(original): str(transformed) for original, transformed in mappings.items()}
        for identity, mappings in record.items()
        if isinstance(mappings, dict)
    }


def format_listener_sources(record: ListenerSources) -> str:
    return json.dumps(record, sort_keys=True, separators=(',', ':'))


def merge_listener_sources(existing: str, desired: str) -> str:
    """Per-Ingress overwrite: each desired entry replaces that Ingress's previous hostnames"""
    record = parse_listener_sources(existing)
    record.update(parse_listener_sources(desired))
    return format_listener_sources(record)
