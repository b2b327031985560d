"""
Rule-based field extraction from raw email text.

Every extractor is a pure pattern pass: a miss yields None, never an error.
Job titles are ranked candidates (subject patterns outrank body patterns);
the other fields take the first pattern that produces a plausible value.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence

from .domain import ExtractedFields, normalize_company_name


_WS_RE = re.compile(r"\s+")
_EMAIL_RE = re.compile(r"[\w.+\-]+@[\w\-]+(?:\.[\w\-]+)+")
_URL_RE = re.compile(r"https?://[^\s<>\"')\]]+", re.I)
_HEBREW_RE = re.compile(r"[֐-׿]")

# Capitalized run of up to four words, e.g. "Acme", "Blue Origin Labs".
_CAP_WORDS = r"([A-Z][\w&'\-]*(?:[ \t]+[A-Z0-9][\w&'\-]*){0,3})"
_PERSON = r"([A-Z][a-z]+(?:[ \t]+[A-Z][a-z'\-]+){0,2})"

MEETING_DOMAINS = (
    "zoom.us",
    "teams.microsoft.com",
    "teams.live.com",
    "meet.google.com",
    "webex.com",
    "gotomeeting.com",
    "skype.com",
)

GENERIC_MAIL_DOMAINS = {
    "gmail.com", "yahoo.com", "hotmail.com", "outlook.com", "icloud.com",
    "mail.com", "protonmail.com", "aol.com", "walla.co.il",
}

# Hosted ATS and job boards: the sender domain says nothing about the employer.
ATS_DOMAINS = (
    "greenhouse.io", "lever.co", "myworkdayjobs.com", "workday.com", "ashbyhq.com",
    "smartrecruiters.com", "icims.com", "jobvite.com", "linkedin.com", "indeed.com",
    "glassdoor.com", "comeet.co", "bamboohr.com",
)

_NOT_A_COMPANY = {
    "linkedin", "noreply", "no-reply", "indeed", "glassdoor", "the", "our", "us", "we",
    "you", "your", "team", "unknown", "hiring", "careers", "jobs",
}

# Words that mark a display name or signature as an organization, not a person.
_NON_PERSON_WORDS = {
    "linkedin", "noreply", "no-reply", "support", "team", "notifications", "notification",
    "careers", "career", "jobs", "hiring", "recruiting", "talent", "hr", "the", "info",
    "admin", "mailer", "acquisition", "people",
}


@dataclass(frozen=True)
class TitleCandidate:
    value: str
    score: int
    source: str  # e.g. "subject:role_label"


def _collapse_ws(s: str) -> str:
    return _WS_RE.sub(" ", (s or "").strip())


def _first_group(patterns: Sequence[str], text: str, flags: int = 0) -> Optional[str]:
    for pat in patterns:
        m = re.search(pat, text or "", flags)
        if m:
            value = _collapse_ws(m.group(1))
            if value:
                return value
    return None


# ---------------------------------------------------------------------------
# Position
# ---------------------------------------------------------------------------

def clean_job_title(raw: Optional[str]) -> Optional[str]:
    """Trim label prefixes, "at Company" suffixes and requisition ids from a title."""
    if not raw:
        return None
    s = _collapse_ws(raw).strip(" \t\r\n\"'“”‘’`")
    s = re.sub(r"^(?:the\s+)?(?:role|position|title|job|opening)\s*[:\-–]\s*", "", s, flags=re.I)
    s = re.sub(r"^(?:the|an?)\s+", "", s, flags=re.I)
    s = re.sub(r"\s+(?:role|position|opening)\s*$", "", s, flags=re.I)
    s = re.sub(r"\s+(?:at|with)\s+[A-Z0-9][\w&.,'\- ]{1,80}\s*$", "", s).strip()
    s = re.sub(
        r"\s*[\(\[\{]\s*(?:req(?:uisition)?|job)?\s*#?\s*[A-Z0-9][\w\-]*\s*[\)\]\}]\s*$",
        "",
        s,
        flags=re.I,
    )
    s = s.strip(" \t\"'“”‘’`").rstrip(" .,:;|/\\-–!")
    return _collapse_ws(s) or None


def is_plausible_job_title(title: Optional[str]) -> bool:
    if not title:
        return False
    s = _collapse_ws(title)
    if not (3 <= len(s) <= 90):
        return False
    if not re.search(r"[A-Za-z֐-׿]", s):
        return False
    if _URL_RE.search(s) or _EMAIL_RE.search(s):
        return False
    if len(s.split()) > 8:
        return False
    banned = {
        "thank you for applying",
        "your application",
        "next steps",
        "application received",
        "interview invitation",
        "interview",
        "invitation",
        "update",
        "application update",
        "thank you",
        "thanks",
        "candidate",
        "position",
        "role",
        "job",
        "us",
    }
    return s.lower() not in banned


def _dedupe_keep_best(cands: Iterable[TitleCandidate]) -> list[TitleCandidate]:
    best: dict[str, TitleCandidate] = {}
    for c in cands:
        key = c.value.lower()
        if key not in best or c.score > best[key].score:
            best[key] = c
    return sorted(best.values(), key=lambda c: c.score, reverse=True)


def _title_candidates(text: str, patterns: Sequence[tuple[str, int, str, int]]) -> list[TitleCandidate]:
    out = []
    for pat, score, source, flags in patterns:
        m = re.search(pat, text or "", flags)
        if not m:
            continue
        cleaned = clean_job_title(m.group(1))
        if is_plausible_job_title(cleaned):
            out.append(TitleCandidate(value=cleaned, score=score, source=source))
    return out


def get_position_candidates(subject: str, body: str, max_body_chars: int = 4000) -> list[TitleCandidate]:
    """Ranked job title candidates from subject + body."""
    subject = subject or ""
    body = (body or "")[:max_body_chars]
    im = re.I | re.M

    subject_patterns = [
        (r"\b(?:role|position|job)\s*:\s*(.+?)\s*$", 110, "subject:label", im),
        (r"\b(?:interview|phone\s*screen)\b.*?\bfor\s+(?:the\s+)?(.+?)\s*$", 105, "subject:interview_for", im),
        (r"\b(?:application|applying|applied)\s+for\s+(?:the\s+)?(.+?)\s*$", 100, "subject:application_for", im),
        (r"^\s*(?:re:\s*|fwd?:\s*)*([A-Z][^|:\n]{3,60}?)\s+(?:at|with|@)\s+[A-Z0-9]", 90, "subject:title_at_company", re.M),
    ]
    body_patterns = [
        (r"^\s*(?:position|role|job\s*title|job)\s*:\s*(.+?)\s*$", 95, "body:label", im),
        (r"thank(?:s| you) for applying (?:for|to) (?:the |our )?([^\n.!?]+?)(?:\s+(?:role|position|opening))?\s+(?:at|with)\b", 90, "body:thanks_for_applying", re.I),
        (r"\bapplication for (?:the )?(.+?)(?:\s+(?:role|position|opening))?(?:\s+(?:at|with)\b|\s*[\n.,!]|$)", 85, "body:application_for", re.I),
        (r"\binterview for (?:the )?(.+?)(?:\s+(?:role|position))?(?:\s+(?:at|with)\b|\s*[\n.,!]|$)", 80, "body:interview_for", re.I),
        (r"\b(?:the|our)\s+([A-Z][\w+#/\-]*(?:[ \t]+[A-Z][\w+#/\-]*){0,5})\s+(?:position|role|opening)\b", 75, "body:title_position", 0),
        (r"לתפקיד\s+([^\n,.]{3,60})", 70, "body:hebrew_role", 0),
    ]
    cands = _title_candidates(subject, subject_patterns) + _title_candidates(body, body_patterns)
    return _dedupe_keep_best(cands)


def extract_position(subject: str, body: str) -> Optional[str]:
    cands = get_position_candidates(subject, body)
    return cands[0].value if cands else None


# ---------------------------------------------------------------------------
# Company
# ---------------------------------------------------------------------------

def _plausible_company(name: Optional[str]) -> Optional[str]:
    name = normalize_company_name(name)
    if not name or len(name) < 2 or len(name) > 60:
        return None
    if name.lower() in _NOT_A_COMPANY or "noreply" in name.lower():
        return None
    return name


def company_from_sender(sender: str) -> Optional[str]:
    """Company from the sender display name ("Acme Careers") or domain."""
    sender = sender or ""
    display = re.sub(r"<[^>]*>", "", sender).strip().strip('"')
    if display and "@" not in display:
        m = re.match(
            r"^(?:the\s+)?(.+?)\s+(?:careers|recruiting|recruitment|talent(?:\s+acquisition)?|hiring(?:\s+team)?|hr|jobs|team)\b",
            display,
            re.I,
        )
        if m:
            found = _plausible_company(m.group(1))
            if found:
                return found

    m = re.search(r"@([\w.\-]+)", sender)
    if not m:
        return None
    domain = m.group(1).lower()
    if domain in GENERIC_MAIL_DOMAINS or any(domain.endswith(ats) for ats in ATS_DOMAINS):
        return None
    parts = [p for p in domain.split(".") if p not in ("mail", "email", "careers", "jobs", "hr")]
    if len(parts) < 2:
        return None
    label = parts[-3] if len(parts) >= 3 and parts[-2] in ("co", "com", "org", "ac") else parts[-2]
    return _plausible_company(label.title())


def extract_company(subject: str, body: str, sender: str) -> Optional[str]:
    text = f"{subject or ''}\n{body or ''}"
    labelled = _first_group([r"^\s*company\s*:\s*([^\n,]+)"], text, re.I | re.M)
    if _plausible_company(labelled):
        return _plausible_company(labelled)

    contextual = [
        r"your application was sent to " + _CAP_WORDS,
        r"(?:position|role|opening|job|team)\s+(?:at|with)\s+" + _CAP_WORDS,
        r"(?:applying|applied|application)\s+(?:to|at|with)\s+" + _CAP_WORDS,
        r"(?:interest in|interested in joining|welcome to)\s+" + _CAP_WORDS,
        r"(?:[Rr]egards|[Ss]incerely|[Bb]est|[Tt]hanks),?[ \t]*\n+[ \t]*(?:[Tt]he[ \t]+)?"
        + _CAP_WORDS
        + r"[ \t]+(?:[Tt]eam|[Rr]ecruiting|[Tt]alent|[Hh]iring|[Cc]areers)",
    ]
    for pat in contextual:
        for m in re.finditer(pat, text):
            found = _plausible_company(m.group(1))
            if found:
                return found

    return company_from_sender(sender)


# ---------------------------------------------------------------------------
# People and contact
# ---------------------------------------------------------------------------

def looks_like_person(name: Optional[str]) -> bool:
    if not name:
        return False
    words = name.replace(",", " ").split()
    if not (1 <= len(words) <= 3):
        return False
    if any(w.lower().strip(".") in _NON_PERSON_WORDS for w in words):
        return False
    if _HEBREW_RE.search(name):
        return True
    return all(re.match(r"^[A-Z][a-z'\-]+\.?$", w) for w in words)


def sender_address(sender: str) -> Optional[str]:
    m = _EMAIL_RE.search(sender or "")
    return m.group(0).lower() if m else None


def sender_display_name(sender: str) -> Optional[str]:
    display = re.sub(r"<[^>]*>", "", sender or "").strip().strip('"').strip()
    if not display or "@" in display:
        return None
    return display


def is_automated_address(address: Optional[str]) -> bool:
    if not address:
        return False
    local = address.split("@")[0].lower()
    return bool(re.search(r"no[-_.]?reply|do[-_.]?not[-_.]?reply|notifications?|mailer|bounce|automated", local))


def extract_contact(body: str) -> tuple[Optional[str], Optional[str]]:
    """Return (contact_email, contact_name) from the body."""
    body = body or ""
    m = re.search(_PERSON + r"\s*<(" + _EMAIL_RE.pattern + r")>", body)
    if m:
        name = _collapse_ws(m.group(1))
        return m.group(2).lower(), name if looks_like_person(name) else None
    m = _EMAIL_RE.search(body)
    if m:
        return m.group(0).lower().rstrip("."), None
    return None, None


def extract_recruiter_name(body: str, sender: str, contact_name: Optional[str] = None) -> Optional[str]:
    if contact_name:
        return contact_name
    signature = _first_group(
        [
            r"(?:[Bb]est(?: regards)?|[Kk]ind regards|[Rr]egards|[Tt]hanks|[Tt]hank you|[Ss]incerely|[Cc]heers),?[ \t]*\n+[ \t]*"
            + _PERSON
            + r"[ \t]*(?:\n|$)",
            r"[Mm]y name is " + _PERSON,
        ],
        body,
    )
    if looks_like_person(signature):
        return signature
    display = sender_display_name(sender)
    if looks_like_person(display):
        return display
    return None


def extract_interviewer_name(text: str, company: Optional[str] = None) -> Optional[str]:
    name = _first_group(
        [
            r"[Ii]nterview(?:ing)? with " + _PERSON,
            r"[Yy]our interviewer(?: will be|:| is)\s*" + _PERSON,
            r"[Yy]ou will (?:be )?(?:meeting|speaking) with " + _PERSON,
            r"ראיון\s+עם\s+([^\n,.]{2,40})",
        ],
        text,
    )
    if not name:
        return None
    if company and name.lower() == company.lower():
        return None
    if _HEBREW_RE.search(name) or looks_like_person(name):
        return name
    return None


# ---------------------------------------------------------------------------
# URLs, location, salary, dates
# ---------------------------------------------------------------------------

def is_meeting_url(url: Optional[str]) -> bool:
    return bool(url) and any(domain in url.lower() for domain in MEETING_DOMAINS)


def extract_urls(text: str) -> list[str]:
    return [u.rstrip(".,;:!?") for u in _URL_RE.findall(text or "")]


def split_urls(text: str) -> tuple[Optional[str], Optional[str]]:
    """Return (meeting_url, job_url): the first of each kind in the text."""
    meeting, job = None, None
    for url in extract_urls(text):
        if is_meeting_url(url):
            meeting = meeting or url
        elif job is None and not re.search(r"unsubscribe|preferences|privacy|tracking", url, re.I):
            job = url
    return meeting, job


def extract_physical_location(text: str) -> Optional[str]:
    return _first_group(
        [
            r"^\s*(?i:location|address|office|venue)\s*:\s*([^\n]{3,100})",
            r"\b(?:at|in)\s+(\d{1,5}\s+[A-Z][\w.]*(?:\s+[A-Z][\w.]*){0,4}\s+(?:St|Street|Ave|Avenue|Rd|Road|Blvd|Boulevard|Way|Drive|Dr|Lane|Ln)\b\.?(?:,\s*[A-Z][\w ]+)?)",
            r"^\s*כתובת\s*:\s*([^\n]{3,100})",
        ],
        text,
        re.M,
    )


def extract_salary(text: str) -> Optional[str]:
    amount = r"\$\s?\d[\d,]*(?:\.\d+)?\s*[kK]?"
    found = _first_group(
        [
            r"(" + amount + r"(?:\s*(?:-|–|to)\s*(?:\$\s?)?\d[\d,]*(?:\.\d+)?\s*[kK]?)?(?:\s*(?:per|/)\s*(?:year|yr|annum|hour|hr|month))?)",
            r"(?:salary|compensation|base pay)(?:\s+range)?\s*(?::|of|is)\s*([^\n.;]{2,60}\d[^\n.;]{0,30})",
            r"(₪\s?\d[\d,]*(?:\s*(?:-|–)\s*\d[\d,]*)?|\d[\d,]*\s*(?:₪|ש\"ח|NIS|ILS)\b)",
        ],
        text,
        re.I,
    )
    return found.rstrip(" ,") if found else None


_APPLICATION_LANGUAGE = re.compile(r"\bappl(?:y|ied|ying|ication)\b|הגשת\s+מועמדות|הגשתי", re.I)


def mentions_application(text: str) -> bool:
    return bool(_APPLICATION_LANGUAGE.search(text or ""))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def extract_fields(
    subject: str,
    body: str,
    sender: str,
    received_at: Optional[datetime] = None,
) -> ExtractedFields:
    """Pull candidate application fields out of a single email."""
    subject = subject or ""
    body = body or ""
    text = f"{subject}\n{body}"

    company = extract_company(subject, body, sender)
    position = extract_position(subject, body)
    contact_email, contact_name = extract_contact(body)
    meeting_url, job_url = split_urls(text)
    applied_date = received_at.date() if received_at and mentions_application(text) else None

    return ExtractedFields(
        company=company,
        position=position,
        applied_date=applied_date,
        contact_email=contact_email,
        job_url=job_url,
        salary=extract_salary(text),
        location=meeting_url or extract_physical_location(text),
        recruiter_name=extract_recruiter_name(body, sender, contact_name),
        interviewer_name=extract_interviewer_name(text, company),
    )
