"""Issue and pull-request record strategy."""

from __future__ import annotations

import json
import re
from typing import Any

from trove.chunking._base import (
    Chunk,
    ChunkMetadata,
    ChunkType,
    DocumentInput,
    build_chunk_id,
)
from trove.exceptions import ParseError

_CODE_FENCE = "```"


def is_important_comment(
    body: str,
    author: str | None,
    original_poster: str | None,
    *,
    min_length: int,
    resolution_keywords: tuple[str, ...],
) -> bool:
    """Decide whether a comment deserves its own chunk.

    A comment qualifies if any of these hold: its body is at least
    *min_length* characters, it contains a code fence, it was written by the
    original poster, or it mentions a resolution keyword.
    """
    text = body.strip()
    if not text:
        return False
    if len(text) >= min_length:
        return True
    if _CODE_FENCE in text:
        return True
    if author is not None and original_poster is not None and author == original_poster:
        return True
    return _keyword_pattern(resolution_keywords).search(text) is not None


def _keyword_pattern(keywords: tuple[str, ...]) -> re.Pattern[str]:
    if not keywords:
        return re.compile(r"(?!x)x")
    alternatives = "|".join(re.escape(k) for k in keywords)
    return re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)


def _login(value: Any) -> str | None:
    """Read an author login from ``{"login": ...}`` or a plain string."""
    if isinstance(value, dict):
        login = value.get("login") or value.get("name")
        return str(login) if login else None
    if isinstance(value, str) and value:
        return value
    return None


def _labels(record: dict[str, Any]) -> tuple[str, ...]:
    labels: list[str] = []
    for label in record.get("labels") or []:
        if isinstance(label, dict) and label.get("name"):
            labels.append(str(label["name"]))
        elif isinstance(label, str) and label:
            labels.append(label)
    return tuple(labels)


def parse_record(content: str) -> dict[str, Any]:
    """Parse *content* as an issue/PR JSON object or raise :class:`ParseError`."""
    try:
        record = json.loads(content)
    except json.JSONDecodeError as exc:
        msg = f"invalid JSON record: {exc.msg} at line {exc.lineno}"
        raise ParseError(msg) from exc
    if not isinstance(record, dict):
        raise ParseError(f"record must be a JSON object, got {type(record).__name__}")
    if not isinstance(record.get("title"), str) or not record["title"].strip():
        raise ParseError("record has no title")
    return record


def chunk_record(
    document: DocumentInput,
    *,
    pull_request: bool,
    min_comment_length: int = 200,
    resolution_keywords: tuple[str, ...] = (),
) -> list[Chunk]:
    """Chunk an issue or pull-request record.

    Always emits exactly one ``issue`` chunk for the title and description,
    followed by a ``comment`` chunk for each comment that passes
    :func:`is_important_comment`.
    """
    record = parse_record(document.content)
    number = record.get("number")
    title = record["title"].strip()
    prefix = "pr" if pull_request else "issue"
    original_poster = _login(record.get("user") or record.get("author"))

    main_label = f"{prefix}-{number}" if number is not None else prefix
    main_id = build_chunk_id(document.document_id, 0, main_label)
    body = record.get("body") or ""
    chunks = [
        Chunk(
            id=main_id,
            chunk_type=ChunkType.ISSUE,
            text=f"# {title}\n\n{body}".strip(),
            metadata=ChunkMetadata(
                index=0,
                title=title,
                symbols=(f"#{number}",) if number is not None else (),
                language=document.language,
                tags=_labels(record),
            ),
        )
    ]

    comment_lists: list[tuple[str, list[Any]]] = [("Comment", record.get("comments") or [])]
    if pull_request:
        comment_lists.append(("Review", record.get("review_comments") or []))

    for kind, comments in comment_lists:
        if not isinstance(comments, list):
            continue
        for comment in comments:
            if not isinstance(comment, dict):
                continue
            comment_body = str(comment.get("body") or "")
            author = _login(comment.get("user") or comment.get("author"))
            if not is_important_comment(
                comment_body,
                author,
                original_poster,
                min_length=min_comment_length,
                resolution_keywords=resolution_keywords,
            ):
                continue
            index = len(chunks)
            comment_title = f"{kind} by {author or 'unknown'}"
            chunks.append(
                Chunk(
                    id=build_chunk_id(document.document_id, index, f"{kind}-{author}"),
                    chunk_type=ChunkType.COMMENT,
                    text=comment_body.strip(),
                    metadata=ChunkMetadata(
                        index=index,
                        title=comment_title,
                        parent_id=main_id,
                        language=document.language,
                    ),
                )
            )

    return chunks
