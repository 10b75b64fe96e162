from sqlalchemy import create_engine, inspect, text
from sqlalchemy.pool import StaticPool

from syncflow.database import init_db


class TestInitDb:

    def test_creates_tables(self, engine):
        tables = set(inspect(engine).get_table_names())
        assert {"inventory", "inventory_transactions", "inventory_audit_logs",
                "production_lines", "style_change_logs", "orders"} <= tables

    def test_adds_late_columns_to_old_inventory_table(self):
        engine = create_engine("sqlite://", poolclass=StaticPool)
        with engine.begin() as conn:
            conn.execute(text(
                "CREATE TABLE inventory (id INTEGER PRIMARY KEY, style_no VARCHAR, grade_a FLOAT, "
                "grade_b FLOAT, current_stock FLOAT, stock_t_minus_1 FLOAT, locked_for_today FLOAT, "
                "last_updated DATETIME)"
            ))
            conn.execute(text("INSERT INTO inventory (style_no, current_stock) VALUES ('BE3250', 80)"))

        init_db(bind=engine)

        columns = {c["name"] for c in inspect(engine).get_columns("inventory")}
        assert {"warehouse_type", "package_spec", "line_id", "line_name", "safety_stock"} <= columns
        with engine.connect() as conn:
            row = conn.execute(text("SELECT warehouse_type, line_id FROM inventory")).one()
        assert tuple(row) == ("general", 0)
        engine.dispose()
