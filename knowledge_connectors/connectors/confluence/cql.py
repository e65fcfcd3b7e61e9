from datetime import datetime

from knowledge_connectors.common.current_datetime import parse_timestamp
from knowledge_connectors.connectors.common.schemas import ConnectorSearchParams

CQL_DATE_FORMAT = "%Y-%m-%d %H:%M"


def quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def format_cql_date(value: datetime) -> str:
    return value.strftime(CQL_DATE_FORMAT)


def modified_since_query(boundary: datetime) -> str:
    return f"lastModified >= {quote(format_cql_date(boundary))} order by lastModified asc"


def build_search_query(params: ConnectorSearchParams) -> str:
    clauses: list[str] = []

    if params.query:
        clauses.append(f"text ~ {quote(params.query)}")

    if params.content_types:
        types = " or ".join(f"type = {quote(t)}" for t in params.content_types)
        clauses.append(f"({types})")

    if params.updated_after:
        after = format_cql_date(parse_timestamp(params.updated_after))
        clauses.append(f"lastModified >= {quote(after)}")

    if params.updated_before:
        before = format_cql_date(parse_timestamp(params.updated_before))
        clauses.append(f"lastModified <= {quote(before)}")

    if params.author_id:
        clauses.append(f"creator = {quote(params.author_id)}")

    if params.path_prefix:
        space_key = params.path_prefix.split("/", 1)[0]
        clauses.append(f"space.key = {quote(space_key)}")

    return " and ".join(clauses) or "type = page"
