"""
Company query over stored email documents.
"""

from jobtracker.schemas import ClassificationStatus


def normalize_company(name) -> str:
    return (name or "").strip().lower() if isinstance(name, str) else ""


def filter_by_company(messages: list, company_name: str) -> list:
    """
    Emails classified as job-related for exactly this company.

    Company comparison is trimmed and case-insensitive but otherwise exact:
    "Acme" matches "acme" and not "Acme Inc".
    """
    target = normalize_company(company_name)
    if not target:
        return []

    matches = []
    for message in messages or []:
        classification = message.get("classification") if isinstance(message, dict) else None
        if not isinstance(classification, dict):
            continue
        company = classification.get("company_name")
        if not isinstance(company, str):
            continue
        if classification.get("is_job_related") is not True:
            continue
        if classification.get("status") == ClassificationStatus.NOT_JOB_RELATED.value:
            continue
        if normalize_company(company) == target:
            matches.append(message)
    return matches


def _timestamp(message: dict):
    value = message.get("internalDateMs")
    # bool is an int subclass but not a timestamp
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return value


def sort_by_internal_date(messages: list) -> list:
    """Newest first; missing or non-numeric timestamps sort as 0."""
    return sorted(messages, key=_timestamp, reverse=True)
