# backend/warehouse/binder.py
"""Bind a :class:`CompiledQuery` into an executable SQLAlchemy statement."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List

from sqlalchemy import BigInteger, DateTime, Float, Integer, String, Uuid, bindparam, text
from sqlalchemy.sql.elements import TextClause

from .column_types import SemanticType, coerce_literal
from .compiler import PLACEHOLDER, QueryParam
from .composer import CompiledQuery
from .errors import BindingError, TypeMismatchError

log = logging.getLogger(__name__)

PARAM_PREFIX = "sq_param_"


@dataclass(frozen=True)
class BoundStatement:
    sql: str
    params: Dict[str, Any]
    clause: TextClause


def sqlalchemy_type(semantic_type: SemanticType):
    if semantic_type is SemanticType.UUID:
        return Uuid(as_uuid=True)
    if semantic_type is SemanticType.STRING:
        return String()
    if semantic_type is SemanticType.INTEGER:
        return Integer()
    if semantic_type in (SemanticType.BIGINT, SemanticType.OID):
        return BigInteger()
    if semantic_type is SemanticType.DOUBLE:
        return Float()
    if semantic_type is SemanticType.TIMESTAMP:
        return DateTime()
    raise TypeMismatchError(f"{semantic_type.value} values cannot be bound as parameters")


def coerce_param(param: QueryParam) -> Any:
    return coerce_literal(param.value, param.semantic_type)


def bind_statement(query: CompiledQuery) -> BoundStatement:
    """Replace the i-th ``?`` with ``:sq_param_i`` and bind the i-th parameter to it."""
    pieces = query.sql.split(PLACEHOLDER)
    placeholder_count = len(pieces) - 1
    if placeholder_count != len(query.params):
        raise BindingError(
            f"statement has {placeholder_count} placeholders but {len(query.params)} parameters"
        )

    sql_parts: List[str] = [pieces[0]]
    params: Dict[str, Any] = {}
    bind_params = []
    for index, (param, tail) in enumerate(zip(query.params, pieces[1:])):
        name = f"{PARAM_PREFIX}{index}"
        value = coerce_param(param)
        params[name] = value
        bind_params.append(bindparam(name, value, type_=sqlalchemy_type(param.semantic_type)))
        sql_parts.append(f":{name}")
        sql_parts.append(tail)

    sql = "".join(sql_parts)
    clause = text(sql)
    if bind_params:
        clause = clause.bindparams(*bind_params)
    log.debug("bound %d parameters", len(params))
    return BoundStatement(sql=sql, params=params, clause=clause)
