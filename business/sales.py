"""Sales engine.

Imports point sales in batch (analyse, then confirm) and maintains single
sales. Every sale is attributed to an influencer by coupon and filed under
the cycle of its date, creating that cycle when needed.

A batch is analysed row by row: problems are collected as messages on the
row and never abort the batch. Confirmation re-runs the analysis and inserts
the valid rows in one transaction.
"""
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from loguru import logger
from sqlalchemy.orm import Session

from database import DatabaseManager
from database.models import Influencer, Sale, SALE_STATUSES
from .cycles import CycleManager
from .errors import Conflict, ImportRejected, NotFound, ValidationFailed
from .import_parsers import (
    RawSaleEntry, is_ecommerce_export, parse_ecommerce_export, parse_manual_import
)
from .parsing import (
    parse_iso_date, parse_number, parse_points_field, parse_sale_date,
    strip_bom, to_positive_int, trim_string
)
from .points import POINT_VALUE_BRL, points_to_brl, round_points
from .schemas import (
    ImportAnalysis, ImportConfirmation, ImportRowResult, ImportSummary,
    SaleRequest, SkuDetail
)

ORDER_NUMBER_MAX_LENGTH = 100


@dataclass
class NormalizedSale:
    """A validated single-sale request."""
    order_number: str
    cupom: str
    sale_date: Any
    points: int
    items: List[Dict[str, Any]] = field(default_factory=list)


def _normalize_order_number(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _add_error(errors: List[str], message: str) -> None:
    if message not in errors:
        errors.append(message)


class SalesService:
    """Sales import and maintenance.

    Attributes:
        db: Database facade.
        cycles: Cycle manager, used to file sales under cycles.
    """

    def __init__(self, db: DatabaseManager,
                 cycles: Optional[CycleManager] = None) -> None:
        self.db = db
        self.cycles = cycles or CycleManager(db)

    # ================================================================
    # Batch import
    # ================================================================

    def analyze_sales_import(self, raw_text: Optional[str],
                             session: Optional[Session] = None) -> ImportAnalysis:
        """Parse and validate a sales batch without writing anything.

        The e-commerce export format is detected from its header; anything
        else is read as a manual paste.

        Raises:
            ValidationFailed: Empty text, a malformed export file, or no
                sale at all.
        """
        text = strip_bom(trim_string(raw_text or ""))
        if not text:
            raise ValidationFailed("Cole os dados das vendas para realizar a importacao.")

        if session is None:
            with self.db.transaction() as own_session:
                return self._analyze(text, own_session)
        return self._analyze(text, session)

    preview_import = analyze_sales_import

    def _analyze(self, text: str, session: Session) -> ImportAnalysis:
        if is_ecommerce_export(text):
            entries = parse_ecommerce_export(text, self.db.get_sku_rates(session=session))
            source = "export"
        else:
            entries = parse_manual_import(text)
            source = "manual"

        analysis = self.build_analysis(entries, session)
        logger.info(
            f"Sales import analysed ({source}): {analysis.total_count} rows, "
            f"{analysis.valid_count} valid, {analysis.error_count} with errors"
        )
        return analysis

    def build_analysis(self, entries: List[RawSaleEntry],
                       session: Session) -> ImportAnalysis:
        """Validate parsed entries against the stored coupons and orders.

        A row is valid when it collected no error and resolved an influencer.

        Raises:
            ValidationFailed: ``entries`` is empty.
        """
        if not entries:
            raise ValidationFailed("Nenhuma venda encontrada nos dados informados.")

        coupon_map = self.db.influencers.map_by_coupons(
            [e.cupom for e in entries], session=session
        )
        existing_orders = self.db.sales.existing_order_numbers(
            [_normalize_order_number(e.order_number) for e in entries], session=session
        )

        occurrences: Dict[str, int] = {}
        for entry in entries:
            order = _normalize_order_number(entry.order_number)
            if order:
                occurrences[order] = occurrences.get(order, 0) + 1

        rows = [
            self._analyze_row(entry, coupon_map, existing_orders, occurrences)
            for entry in entries
        ]

        valid = [row for row in rows if row.is_valid]
        total_points = sum(row.points for row in valid)
        return ImportAnalysis(
            rows=rows,
            summary=ImportSummary(
                count=len(valid),
                total_points=total_points,
                total_points_value=points_to_brl(total_points),
                point_value_brl=POINT_VALUE_BRL,
            ),
            total_count=len(rows),
            valid_count=len(valid),
            error_count=len(rows) - len(valid),
            has_errors=any(row.errors for row in rows),
        )

    @staticmethod
    def _analyze_row(entry: RawSaleEntry, coupon_map: Dict[str, Influencer],
                     existing_orders, occurrences: Dict[str, int]) -> ImportRowResult:
        errors: List[str] = []
        order = _normalize_order_number(entry.order_number)
        cupom = (entry.cupom or "").strip()

        sale_date = None
        try:
            sale_date = parse_sale_date(entry.raw_date)
        except ValueError as e:
            _add_error(errors, str(e))

        points: Optional[int] = None
        if entry.total_points is not None:
            points = round_points(entry.total_points)
        else:
            try:
                points = parse_points_field(entry.raw_points, "Pontos")
            except ValueError as e:
                _add_error(errors, str(e))

        details: List[SkuDetail] = []
        for line in entry.sku_details:
            sku = (line.sku or "").strip()
            quantity = line.quantity
            if quantity is None:
                quantity = parse_number(line.quantity_raw)
                quantity = quantity if math.isfinite(quantity) else None
            rate = line.points_per_unit
            label = sku or "(sem SKU)"

            if not sku:
                _add_error(errors, f"SKU nao informado na linha {line.line}.")
            if quantity is None or quantity <= 0:
                _add_error(errors, f"Quantidade invalida para SKU {label} na linha {line.line}.")
            if rate is None or rate < 0:
                _add_error(errors, f"SKU {label} nao possui pontuacao cadastrada.")

            details.append(SkuDetail(
                sku=sku,
                quantity=quantity,
                points_per_unit=rate,
                points=(
                    round_points(quantity * rate)
                    if rate is not None and quantity is not None and quantity > 0 else None
                ),
                line=line.line,
            ))

        influencer = coupon_map.get(cupom.lower()) if cupom else None
        if influencer is None:
            _add_error(errors, "Cupom nao cadastrado.")

        if order and occurrences.get(order, 0) > 1:
            _add_error(errors, "Numero de pedido repetido nos dados importados.")
        if order and order in existing_orders:
            _add_error(errors, "Numero de pedido ja cadastrado.")
        if not order:
            _add_error(errors, "Informe o numero do pedido.")
        if sale_date is None:
            _add_error(errors, "Informe a data da venda.")

        if points is None and details and all(d.points is not None for d in details):
            points = round_points(sum(d.points for d in details))
        if points is None:
            _add_error(errors, "Informe a pontuacao da venda.")

        points = round_points(points) if points is not None else 0
        return ImportRowResult(
            line=entry.line,
            order_number=order,
            cupom=cupom,
            date=sale_date.isoformat() if sale_date else None,
            points=points,
            points_value=points_to_brl(points),
            influencer_id=influencer.id if influencer else None,
            influencer_name=influencer.name if influencer else None,
            errors=errors,
            raw_date=entry.raw_date or "",
            raw_points=entry.raw_points or "",
            sku_details=details,
        )

    def confirm_import(self, raw_text: Optional[str]) -> ImportConfirmation:
        """Re-analyse a batch and insert its valid rows.

        Invalid rows are skipped and counted as ignored. Analysis and inserts
        share one transaction, so either every valid row is stored or none.

        Raises:
            ValidationFailed: The batch cannot be analysed.
            ImportRejected: No row is valid; carries the analysis.
        """
        text = strip_bom(trim_string(raw_text or ""))
        if not text:
            raise ValidationFailed("Cole os dados das vendas para realizar a importacao.")

        with self.db.transaction() as session:
            analysis = self._analyze(text, session)
            valid_rows = analysis.valid_rows
            if not valid_rows:
                raise ImportRejected("Nenhum pedido pronto para importacao.", analysis)

            created = []
            for row in valid_rows:
                cycle = self.cycles.ensure_cycle_for_date(row.date, session=session)
                sale = self.db.sales.create({
                    "influencer_id": row.influencer_id,
                    "order_number": row.order_number,
                    "sale_date": parse_iso_date(row.date),
                    "cycle_id": cycle.id if cycle else None,
                    "commission": points_to_brl(row.points),
                    "points": row.points,
                    "status": "pending",
                    "items": [
                        {
                            "sku": d.sku,
                            "quantity": int(d.quantity or 0),
                            "points_per_unit": d.points_per_unit or 0,
                            "points": d.points or 0,
                        }
                        for d in row.sku_details
                    ],
                }, session=session)
                self.cycles.touch_cycle(sale.cycle_id, session, best_effort=True)
                created.append(self._serialize(sale))

        ignored = max(analysis.total_count - len(valid_rows), 0)
        logger.info(f"Sales import confirmed: {len(created)} inserted, {ignored} ignored")
        return ImportConfirmation(
            inserted=len(created),
            ignored=ignored,
            rows=created,
            summary=analysis.summary,
        )

    # ================================================================
    # Single sales
    # ================================================================

    def normalize_sale_request(self, body: Union[SaleRequest, Dict[str, Any], None],
                               session: Session) -> NormalizedSale:
        """Validate a single-sale body and compute its points.

        When SKU items are given their total is the sale's points, and an
        explicit points value must match it.

        Raises:
            ValidationFailed: Missing or malformed field, unknown SKU, or
                points that disagree with the items.
        """
        request = body if isinstance(body, SaleRequest) else SaleRequest.model_validate(body or {})

        if not request.order_number:
            raise ValidationFailed("Informe o numero do pedido.")
        if len(request.order_number) > ORDER_NUMBER_MAX_LENGTH:
            raise ValidationFailed("Numero do pedido deve ter no maximo 100 caracteres.")
        if not request.cupom:
            raise ValidationFailed("Informe o cupom da influenciadora.")
        sale_date = parse_iso_date(request.date)
        if sale_date is None:
            raise ValidationFailed("Informe uma data valida (YYYY-MM-DD).")

        items, errors = self._resolve_items(request, session)
        if errors:
            raise ValidationFailed(errors[0], details=errors)

        points = None
        if request.points is not None and request.points != "":
            try:
                points = parse_points_field(request.points, "Pontos")
            except ValueError as e:
                raise ValidationFailed(str(e)) from None

        if items:
            total = sum(item["points"] for item in items)
            if points is not None and points != total:
                raise ValidationFailed(
                    "A pontuacao informada nao corresponde ao total calculado pelos SKUs.",
                    details=["Ajuste os pontos ou os itens cadastrados para prosseguir."],
                )
            points = total

        if points is None:
            raise ValidationFailed(
                "Informe a pontuacao da venda ou cadastre pelo menos um SKU valido.",
                details=["Adicione itens com SKU cadastrado para calcular os pontos automaticamente."],
            )

        return NormalizedSale(
            order_number=request.order_number,
            cupom=request.cupom,
            sale_date=sale_date,
            points=points,
            items=items,
        )

    def _resolve_items(self, request: SaleRequest, session: Session):
        items: List[Dict[str, Any]] = []
        errors: List[str] = []
        for position, item in enumerate(request.items, start=1):
            if item is None:
                continue
            label = f"Item {position}"
            if not item.sku:
                errors.append(f"{label}: informe o SKU.")
                continue

            record = self.db.skus.find_active(item.sku, session=session)
            if record is None:
                errors.append(f"SKU {item.sku} nao possui pontuacao cadastrada.")
                continue

            quantity = parse_number(item.quantity)
            if not math.isfinite(quantity) or quantity <= 0:
                errors.append(f"{label}: quantidade invalida.")
                continue
            whole = math.floor(quantity + 0.5)
            if abs(whole - quantity) > 0.0001:
                errors.append(f"{label}: quantidade deve ser um numero inteiro.")
                continue

            rate = round_points(record.points_per_unit or 0)
            items.append({
                "sku": record.sku or item.sku,
                "quantity": int(whole),
                "points_per_unit": rate,
                "points": round_points(whole * rate),
            })
        return items, errors

    def create_sale(self, body: Union[SaleRequest, Dict[str, Any], None]) -> Dict[str, Any]:
        """Create one sale, filed under the cycle of its date.

        Raises:
            ValidationFailed: Invalid body.
            NotFound: Unknown coupon.
            Conflict: The order number already exists.
        """
        with self.db.transaction() as session:
            data = self.normalize_sale_request(body, session)
            influencer = self.db.influencers.find_by_coupon(data.cupom, session=session)
            if influencer is None:
                raise NotFound("Cupom nao encontrado.")
            if self.db.sales.find_by_order_number(data.order_number, session=session):
                raise Conflict("Ja existe uma venda com esse numero de pedido.")

            cycle = self.cycles.ensure_cycle_for_date(data.sale_date, session=session)
            sale = self.db.sales.create({
                "influencer_id": influencer.id,
                "order_number": data.order_number,
                "sale_date": data.sale_date,
                "cycle_id": cycle.id if cycle else None,
                "commission": points_to_brl(data.points),
                "points": data.points,
                "status": "pending",
                "items": data.items,
            }, session=session)
            self.cycles.touch_cycle(sale.cycle_id, session, best_effort=True)
            logger.info(f"Sale {sale.order_number} created for influencer {influencer.id}")
            return self._serialize(sale)

    def update_sale(self, sale_id: Any,
                    body: Union[SaleRequest, Dict[str, Any], None]) -> Dict[str, Any]:
        """Replace a sale's data and SKU items.

        The sale moves to the cycle of its new date; both the old and the new
        cycle are touched. ``status`` is optional.

        Raises:
            ValidationFailed: Invalid id, body or status.
            NotFound: Unknown sale or coupon.
            Conflict: Another sale has the order number.
        """
        numeric_id = to_positive_int(sale_id)
        if numeric_id is None:
            raise ValidationFailed("ID invalido.")

        request = body if isinstance(body, SaleRequest) else SaleRequest.model_validate(body or {})
        with self.db.transaction() as session:
            sale = self.db.sales.find_by_id(numeric_id, session=session)
            if sale is None:
                raise NotFound("Venda nao encontrada.")

            data = self.normalize_sale_request(request, session)
            influencer = self.db.influencers.find_by_coupon(data.cupom, session=session)
            if influencer is None:
                raise NotFound("Cupom nao encontrado.")
            other = self.db.sales.find_by_order_number(data.order_number, session=session)
            if other is not None and other.id != sale.id:
                raise Conflict("Ja existe uma venda com esse numero de pedido.")

            status = sale.status or "pending"
            if request.status is not None and request.status.strip():
                status = request.status.strip().lower()
                if status not in SALE_STATUSES:
                    raise ValidationFailed("Status invalido. Use pending, approved ou rejected.")

            previous_cycle_id = sale.cycle_id
            cycle = self.cycles.ensure_cycle_for_date(data.sale_date, session=session)

            sale.influencer_id = influencer.id
            sale.order_number = data.order_number
            sale.sale_date = data.sale_date
            sale.cycle_id = cycle.id if cycle else None
            sale.gross_value = 0
            sale.discount = 0
            sale.net_value = 0
            sale.commission = points_to_brl(data.points)
            sale.points = data.points
            sale.status = status
            session.flush()
            self.db.sales.replace_items(sale, data.items, session)

            self.cycles.touch_cycle(sale.cycle_id, session, best_effort=True)
            if previous_cycle_id and previous_cycle_id != sale.cycle_id:
                self.cycles.touch_cycle(previous_cycle_id, session, best_effort=True)

            session.refresh(sale)
            logger.info(f"Sale {sale.id} updated (status={status})")
            return self._serialize(sale)

    def delete_sale(self, sale_id: Any) -> Dict[str, str]:
        """Delete a sale and its SKU items.

        Raises:
            ValidationFailed: Invalid id.
            NotFound: Unknown sale.
        """
        numeric_id = to_positive_int(sale_id)
        if numeric_id is None:
            raise ValidationFailed("ID invalido.")

        with self.db.transaction() as session:
            sale = self.db.sales.find_by_id(numeric_id, session=session)
            if sale is None:
                raise NotFound("Venda nao encontrada.")
            cycle_id = sale.cycle_id
            session.delete(sale)
            session.flush()
            self.cycles.touch_cycle(cycle_id, session, best_effort=True)

        logger.info(f"Sale {numeric_id} deleted")
        return {"message": "Venda removida com sucesso."}

    def list_sales_by_influencer(self, influencer: Optional[Influencer]) -> List[Dict[str, Any]]:
        """Sales of an influencer, newest first."""
        if influencer is None or not influencer.id:
            return []
        with self.db.transaction() as session:
            sales = self.db.sales.list_by_influencer(influencer.id, session=session)
            return [self._serialize(sale) for sale in sales]

    def get_sales_summary(self, influencer: Optional[Influencer]) -> Dict[str, Any]:
        """Approved points of an influencer and their currency value."""
        if influencer is None or not influencer.id:
            return {
                "influencer_id": None,
                "cupom": None,
                "commission_rate": 0,
                "total_points": 0,
                "total_points_value": 0,
                "point_value_brl": POINT_VALUE_BRL,
            }

        total_points = self.db.sales.approved_points(influencer.id)
        return {
            "influencer_id": influencer.id,
            "cupom": influencer.coupon,
            "commission_rate": float(influencer.commission_rate or 0),
            "total_points": total_points,
            "total_points_value": points_to_brl(total_points),
            "point_value_brl": POINT_VALUE_BRL,
        }

    def _serialize(self, sale: Sale) -> Dict[str, Any]:
        """Sale dict with currency values; call inside the loading session."""
        row = self.db.sales.to_dict(sale)
        row["points_value"] = points_to_brl(row["points"])
        influencer = sale.influencer
        row["commission_rate"] = float(influencer.commission_rate or 0) if influencer else 0
        for detail in row["sku_details"]:
            detail["points_value"] = points_to_brl(detail["points"])
        return row
