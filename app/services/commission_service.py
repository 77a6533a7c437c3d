"""
Commission aggregation over closed leads.

Pure functions: callers load leads and consultants, these functions only compute.
Values typed by humans ("R$ 1.234,56", "1,234.56", "300") are parsed with ``parse_brl``,
which never raises so dirty rows cannot break a report.
"""
import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Optional

from app.models.client import Consultant
from app.models.lead import Lead
from app.services.pipeline_rules import DEFAULT_INITIAL_STAGE_SLUG, FINAL_STAGE_SLUG

DEFAULT_RATE = 0.10
UNASSIGNED_LABEL = "Não atribuído"

IN_PROGRESS_STAGES = frozenset({
    "contato_inicial",
    "aguardando_receita",
    "receita_recebida",
    "receita_validada",
    "produtos_liberados",
})


def parse_brl(value: Any) -> float:
    """
    Parse a monetary amount written in Brazilian or US notation.

    The last separator present is the decimal one when both appear. With a single kind of
    separator, one group of at most two digits after it is read as decimals, anything else
    as thousands grouping.

    >>> parse_brl("1.234,56"), parse_brl("1,234.56"), parse_brl("R$ 300,00"), parse_brl("garbage")
    (1234.56, 1234.56, 300.0, 0.0)
    """
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
        return number if math.isfinite(number) else 0.0
    if not isinstance(value, str) or not value:
        return 0.0

    cleaned = "".join(value.split())
    if cleaned.startswith("R$"):
        cleaned = cleaned[2:]

    has_comma = "," in cleaned
    has_dot = "." in cleaned
    if has_comma and has_dot:
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif has_comma:
        parts = cleaned.split(",")
        if len(parts) == 2 and len(parts[1]) <= 2:
            cleaned = cleaned.replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif has_dot:
        parts = cleaned.split(".")
        if not (len(parts) == 2 and len(parts[1]) <= 2):
            cleaned = cleaned.replace(".", "")

    try:
        number = float(cleaned)
    except ValueError:
        return 0.0
    return number if math.isfinite(number) else 0.0


def normalize_rate(raw: Any, default: float = DEFAULT_RATE) -> float:
    """
    Commission rates are stored either as a fraction ("0.15") or a percentage ("15").
    Returns a 0–1 fraction; anything outside (0, 100] falls back to ``default``.
    """
    try:
        rate = float(raw)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(rate) or rate <= 0:
        return default
    if rate <= 1:
        return rate
    if rate <= 100:
        return rate / 100
    return default


@dataclass
class SalespersonCommission:
    consultant_id: Optional[int]
    name: str
    rate: float
    leads: int = 0
    total_value: float = 0.0
    commission: float = 0.0


@dataclass
class CommissionSummary:
    total_commissions: float
    total_sales_value: float
    average_rate: float
    by_salesperson: dict[str, SalespersonCommission] = field(default_factory=dict)


def _salesperson_key(consultant_id: Optional[int]) -> str:
    return str(consultant_id) if consultant_id is not None else "unassigned"


def aggregate_commissions(
    leads: Iterable[Lead],
    consultants: Iterable[Consultant],
    salesperson_id: Optional[int] = None,
) -> CommissionSummary:
    """
    Sum commissions of finalized leads per *currently assigned* consultant.

    ``average_rate`` is value-weighted (total commission / total sales value), not the mean
    of the individual rates.
    """
    rates_by_id = {c.id: (c.full_name.strip(), normalize_rate(c.commission_rate)) for c in consultants}

    by_salesperson: dict[str, SalespersonCommission] = {}
    total_commissions = 0.0
    total_sales_value = 0.0

    for lead in leads:
        if lead.status != FINAL_STAGE_SLUG:
            continue
        consultant_id = lead.assigned_consultant_id
        if salesperson_id is not None and consultant_id != salesperson_id:
            continue

        if consultant_id in rates_by_id:
            name, rate = rates_by_id[consultant_id]
        else:
            name, rate = UNASSIGNED_LABEL, DEFAULT_RATE
            consultant_id = None

        value = parse_brl(lead.estimated_value)
        commission = value * rate

        key = _salesperson_key(consultant_id)
        entry = by_salesperson.get(key)
        if entry is None:
            entry = by_salesperson[key] = SalespersonCommission(consultant_id=consultant_id, name=name, rate=rate)
        entry.leads += 1
        entry.total_value += value
        entry.commission += commission

        total_commissions += commission
        total_sales_value += value

    average_rate = total_commissions / total_sales_value if total_sales_value > 0 else 0.0
    return CommissionSummary(
        total_commissions=total_commissions,
        total_sales_value=total_sales_value,
        average_rate=average_rate,
        by_salesperson=by_salesperson,
    )


def pipeline_stats(leads: Iterable[Lead]) -> dict[str, Any]:
    """Dashboard cards of the CRM board."""
    leads = list(leads)
    closed = [lead for lead in leads if lead.status == FINAL_STAGE_SLUG]
    open_leads = [lead for lead in leads if lead.status != FINAL_STAGE_SLUG]

    total_value = sum(parse_brl(lead.estimated_value) for lead in closed)
    return {
        "total": len(leads),
        "novos": sum(1 for lead in leads if lead.status == DEFAULT_INITIAL_STAGE_SLUG),
        "em_andamento": sum(1 for lead in leads if lead.status in IN_PROGRESS_STAGES),
        "finalizados": len(closed),
        "total_value": total_value,
        "pipeline_value": sum(parse_brl(lead.estimated_value) for lead in open_leads),
        "conversion_rate": round(len(closed) / len(leads) * 100) if leads else 0,
        "avg_deal_size": total_value / len(closed) if closed else 0.0,
    }
