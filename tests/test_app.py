"""Command line entry tests."""
import json

import pytest

import app


@pytest.fixture
def db_url(temp_db):
    return temp_db.database_url


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(app, "setup_logging", lambda: None)


def _run(capsys, *argv):
    code = app.main(list(argv))
    return code, json.loads(capsys.readouterr().out)


class TestCommands:
    def test_init_db_seeds_reference_data(self, temp_db, db_url, capsys):
        code, data = _run(capsys, "--db", db_url, "init-db")
        assert code == 0
        assert data["status"] == "ready"
        assert temp_db.influencers.find_by_coupon("HIDRA10") is not None
        assert temp_db.get_sku_rates()["hp-serum-30"] == 10

        # Idempotent
        _run(capsys, "--db", db_url, "init-db")
        assert len(temp_db.influencers.list_by_name()) == 1

    def test_cycle(self, db_url, capsys):
        code, data = _run(capsys, "--db", db_url, "cycle")
        assert code == 0
        assert data["status"] == "open"
        assert data["label"] == f"{data['month']:02d}/{data['year']}"

    def test_import_sales_preview_and_confirm(self, temp_db, db_url, make_influencer, tmp_path, capsys):
        make_influencer("Ana", coupon="ANA10")
        sales_file = tmp_path / "vendas.txt"
        sales_file.write_text("pedido;cupom;data;pontos\n1001;ANA10;05/06/2024;40\n", encoding="utf-8")

        code, preview = _run(capsys, "--db", db_url, "import-sales", str(sales_file))
        assert code == 0
        assert preview["validCount"] == 1
        assert temp_db.sales.find_by_order_number("1001") is None

        code, result = _run(capsys, "--db", db_url, "import-sales", str(sales_file), "--confirm")
        assert code == 0
        assert result["inserted"] == 1
        assert temp_db.sales.find_by_order_number("1001") is not None

    def test_rejected_import_exits_non_zero(self, db_url, tmp_path, capsys):
        sales_file = tmp_path / "vendas.txt"
        sales_file.write_text("1001;NOPE;05/06/2024;40\n", encoding="utf-8")
        code, data = _run(capsys, "--db", db_url, "import-sales", str(sales_file), "--confirm")
        assert code == 1
        assert data["error"] == "Nenhum pedido pronto para importacao."
        assert data["analysis"]["errorCount"] == 1

    def test_dashboards(self, db_url, make_influencer, capsys):
        ana = make_influencer("Ana")
        code, master = _run(capsys, "--db", db_url, "dashboard")
        assert code == 0
        assert master["stats"]["totalInfluencers"] == 1

        code, personal = _run(capsys, "--db", db_url, "dashboard", "--influencer", str(ana.id))
        assert code == 0
        assert personal["influencer"]["nome"] == "Ana"

    def test_unknown_influencer(self, db_url, capsys):
        code, data = _run(capsys, "--db", db_url, "dashboard", "--influencer", "999")
        assert code == 1
        assert data == {"error": "Influenciadora nao encontrada."}

    def test_snapshot(self, db_url, make_influencer, capsys):
        make_influencer("Ana")
        make_influencer("Bia")
        code, rows = _run(capsys, "--db", db_url, "snapshot")
        assert code == 0
        assert len(rows) == 2
        assert all(r["total_points"] == 0 for r in rows)
