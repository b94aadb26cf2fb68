"""
calmesh.orchestration.summary - Cross-account email digest

Groups a merged multi-account email list into topic clusters, flags mail
that looks like it reached the wrong account (the sender or the content
belongs to another account's domain), and profiles each account's
correspondents. Pure functions over EmailMessage/Account; fetching is the
service's job.
"""

import re
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

from calmesh.accounts.models import Account
from calmesh.integrations.types import EmailMessage
from calmesh.orchestration.fanout import AccountWarning
from calmesh.orchestration.routing import extract_domain

TOPIC_KEYWORDS: dict[str, tuple[str, ...]] = {
    "Meeting/Calendar": (
        "meeting", "calendar", "schedule", "invite", "call", "zoom", "teams", "agenda", "sync",
    ),
    "Project Updates": (
        "update", "status", "progress", "milestone", "sprint", "release", "deployment",
        "project",
    ),
    "Action Required": (
        "action", "required", "urgent", "asap", "deadline", "due", "reminder", "follow-up",
        "followup",
    ),
    "Financial": (
        "invoice", "payment", "expense", "budget", "cost", "price", "quote", "proposal",
        "contract",
    ),
    "HR/Admin": (
        "hr", "vacation", "leave", "pto", "benefits", "payroll", "timesheet", "policy",
    ),
    "Support/Issues": (
        "issue", "bug", "problem", "error", "help", "support", "ticket", "incident",
    ),
    "Newsletters/Marketing": (
        "newsletter", "subscribe", "unsubscribe", "promotion", "offer", "marketing",
    ),
    "Social/Personal": (
        "birthday", "congratulations", "welcome", "farewell", "party", "lunch", "coffee",
    ),
}  # fmt: skip

OTHER_TOPIC = "Other/General"
PREVIEW_LENGTH = 150
MAX_MISMATCHES = 20

_STOP_WORDS = frozenset(
    "the a an and or but in on at to for of with is are was were be been being have has had "
    "do does did will would could should may might can this that these those i you he she it "
    "we they my your his her its our their re fw fwd".split()
)
_HTML_TAG_RE = re.compile(r"<[^>]+>")
_HTML_ENTITY_RE = re.compile(r"&\w+;")
_SPACE_RE = re.compile(r"\s+")
_WORD_SPLIT_RE = re.compile(r"\W+")


@dataclass
class EmailSummaryItem:
    id: str
    account_id: str
    subject: str
    from_addr: str
    from_name: str
    received_at: datetime
    is_read: bool
    has_attachments: bool
    body_preview: str = ""


@dataclass
class TopicCluster:
    topic: str
    keywords: list[str]
    email_count: int
    unread_count: int
    account_ids: list[str]
    earliest: datetime | None
    latest: datetime | None
    unique_senders: list[str]
    samples: list[EmailSummaryItem]


@dataclass
class AccountMismatch:
    email: EmailSummaryItem
    received_on_account: str
    expected_account: str
    reason: str
    confidence: float


@dataclass
class SenderDomainSummary:
    domain: str
    email_count: int
    is_internal: bool


@dataclass
class PersonaContext:
    account_id: str
    persona_name: str
    domains: list[str]
    email_count: int
    unread_count: int
    primary_topics: list[str]
    top_sender_domains: list[SenderDomainSummary]


@dataclass
class ContextualEmailSummary:
    """Result of CalendarMeshService.get_contextual_email_summary."""

    total_emails: int
    accounts_searched: int
    search_keywords: list[str] = field(default_factory=list)
    clusters: list[TopicCluster] = field(default_factory=list)
    mismatches: list[AccountMismatch] = field(default_factory=list)
    personas: list[PersonaContext] = field(default_factory=list)
    warnings: list[AccountWarning] = field(default_factory=list)


def parse_topics(topics: str | Sequence[str] | None) -> list[str]:
    """Split a comma-separated topic string (or pass a list through), dropping blanks."""
    if topics is None:
        return []
    if isinstance(topics, str):
        topics = topics.split(",")
    return [t.strip() for t in topics if t and t.strip()]


def strip_html(html: str) -> str:
    text = _HTML_TAG_RE.sub(" ", html)
    text = _HTML_ENTITY_RE.sub(" ", text)
    return _SPACE_RE.sub(" ", text).strip()


def to_summary_item(email: EmailMessage, include_body_preview: bool = False) -> EmailSummaryItem:
    preview = ""
    if include_body_preview and email.body:
        text = strip_html(email.body)
        preview = text[:PREVIEW_LENGTH].strip() + "..." if len(text) > PREVIEW_LENGTH else text
    return EmailSummaryItem(
        id=email.id,
        account_id=email.account_id,
        subject=email.subject,
        from_addr=email.from_addr,
        from_name=email.from_name,
        received_at=email.received_at,
        is_read=email.is_read,
        has_attachments=email.has_attachments,
        body_preview=preview,
    )


def _matches(email: EmailMessage, keywords: Sequence[str]) -> bool:
    text = f"{email.subject} {email.body}".casefold()
    return any(k.casefold() in text for k in keywords)


def frequent_keywords(emails: Sequence[EmailMessage], limit: int = 5) -> list[str]:
    """Subject words (3+ letters, not stop words) that occur at least twice, most common first."""
    counts: Counter[str] = Counter()
    for email in emails:
        for word in _WORD_SPLIT_RE.split(email.subject.lower()):
            if len(word) > 2 and word not in _STOP_WORDS:
                counts[word] += 1
    return [word for word, n in counts.most_common() if n >= 2][:limit]


def _build_cluster(
    topic: str, emails: list[EmailMessage], include_body_preview: bool, max_samples: int
) -> TopicCluster:
    newest_first = sorted(emails, key=lambda e: e.received_at, reverse=True)
    return TopicCluster(
        topic=topic,
        keywords=frequent_keywords(emails),
        email_count=len(emails),
        unread_count=sum(1 for e in emails if not e.is_read),
        account_ids=list(dict.fromkeys(e.account_id for e in emails)),
        earliest=newest_first[-1].received_at,
        latest=newest_first[0].received_at,
        unique_senders=list(dict.fromkeys(e.from_addr for e in emails))[:10],
        samples=[to_summary_item(e, include_body_preview) for e in newest_first[:max_samples]],
    )


def cluster_by_topic(
    emails: Sequence[EmailMessage],
    search_keywords: Sequence[str] = (),
    *,
    include_body_preview: bool = False,
    max_samples: int = 5,
) -> list[TopicCluster]:
    """
    Assign each email to the first matching built-in topic, then to the
    first matching search keyword ("Custom: <kw>"), else to Other/General.

    Clusters are ordered by unread count, then size, both descending.
    """
    groups: dict[str, list[EmailMessage]] = {}
    remaining = list(emails)

    candidates = list(TOPIC_KEYWORDS.items())
    candidates += [(f"Custom: {kw}", (kw,)) for kw in search_keywords]
    for topic, keywords in candidates:
        matched = [e for e in remaining if _matches(e, keywords)]
        if matched:
            groups[topic] = matched
            remaining = [e for e in remaining if not _matches(e, keywords)]
    if remaining:
        groups[OTHER_TOPIC] = remaining

    clusters = [
        _build_cluster(topic, members, include_body_preview, max_samples)
        for topic, members in groups.items()
    ]
    clusters.sort(key=lambda c: (c.unread_count, c.email_count), reverse=True)
    return clusters


def detect_mismatches(
    emails: Sequence[EmailMessage],
    accounts: Sequence[Account],
    *,
    include_body_preview: bool = False,
) -> list[AccountMismatch]:
    """
    Flag emails whose sender domain belongs to a different account (0.8)
    or whose subject/body mentions another account's domain (0.5).
    """
    by_id = {a.id.casefold(): a for a in accounts}
    by_domain: dict[str, list[Account]] = {}
    for account in accounts:
        for domain in account.domains:
            by_domain.setdefault(domain.lower(), []).append(account)

    mismatches: list[AccountMismatch] = []
    for email in emails:
        received_on = email.account_id.casefold()
        if received_on not in by_id:
            continue
        sender_domain = extract_domain(email.from_addr)
        if sender_domain is None:
            continue

        expected = next(
            (a for a in by_domain.get(sender_domain, []) if a.id.casefold() != received_on),
            None,
        )
        if expected is not None:
            mismatches.append(
                AccountMismatch(
                    email=to_summary_item(email, include_body_preview),
                    received_on_account=email.account_id,
                    expected_account=expected.id,
                    reason=(
                        f"Sender from {sender_domain} typically communicates via "
                        f"{expected.display_name}"
                    ),
                    confidence=0.8,
                )
            )

        subject = email.subject.casefold()
        body = email.body.casefold()
        for account in accounts:
            if account.id.casefold() == received_on:
                continue
            mentioned = next(
                (
                    d
                    for d in account.domains
                    if d.casefold() in subject or f"@{d.casefold()}" in body
                ),
                None,
            )
            if mentioned is not None:
                mismatches.append(
                    AccountMismatch(
                        email=to_summary_item(email, include_body_preview),
                        received_on_account=email.account_id,
                        expected_account=account.id,
                        reason=(
                            f"Email mentions {mentioned} which is associated with "
                            f"{account.display_name}"
                        ),
                        confidence=0.5,
                    )
                )

    mismatches.sort(key=lambda m: (m.confidence, m.email.received_at), reverse=True)
    return mismatches[:MAX_MISMATCHES]


def build_personas(
    emails: Sequence[EmailMessage],
    accounts: Sequence[Account],
    clusters: Sequence[TopicCluster],
) -> list[PersonaContext]:
    """One profile per account that received mail, busiest (unread, then total) first."""
    personas = []
    for account in accounts:
        key = account.id.casefold()
        own = [e for e in emails if e.account_id.casefold() == key]
        if not own:
            continue
        topics = [c.topic for c in clusters if key in (a.casefold() for a in c.account_ids)]
        internal = {d.lower() for d in account.domains}
        domain_counts = Counter(
            d for d in (extract_domain(e.from_addr) for e in own) if d is not None
        )
        personas.append(
            PersonaContext(
                account_id=account.id,
                persona_name=account.display_name,
                domains=list(account.domains),
                email_count=len(own),
                unread_count=sum(1 for e in own if not e.is_read),
                primary_topics=topics[:5],
                top_sender_domains=[
                    SenderDomainSummary(domain=d, email_count=n, is_internal=d in internal)
                    for d, n in domain_counts.most_common(5)
                ],
            )
        )
    personas.sort(key=lambda p: (p.unread_count, p.email_count), reverse=True)
    return personas


def build_contextual_summary(
    emails: Sequence[EmailMessage],
    accounts: Sequence[Account],
    search_keywords: Sequence[str] = (),
    *,
    include_body_preview: bool = False,
    max_samples: int = 5,
) -> ContextualEmailSummary:
    clusters = cluster_by_topic(
        emails,
        search_keywords,
        include_body_preview=include_body_preview,
        max_samples=max_samples,
    )
    return ContextualEmailSummary(
        total_emails=len(emails),
        accounts_searched=len(accounts),
        search_keywords=list(search_keywords),
        clusters=clusters,
        mismatches=detect_mismatches(emails, accounts, include_body_preview=include_body_preview),
        personas=build_personas(emails, accounts, clusters),
    )
