import sqlite3
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lixie.sources import load_registry

db_path = sys.argv[1] if len(sys.argv) > 1 else str(ROOT / "lixie.db")
conn = sqlite3.connect(db_path)
cur = conn.cursor()

for region, table in load_registry().tables().items():
    cur.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,))
    if cur.fetchone() is None:
        print(f"== {region} ({table}): 表不存在")
        continue
    cur.execute(f"SELECT COUNT(*) FROM {table};")
    print(f"== {region} ({table}): {cur.fetchone()[0]} 条")

    # 最新 5 条
    cur.execute(f"SELECT id, published_at, category, hotness_score, title FROM {table} "
                "ORDER BY published_at DESC LIMIT 5;")
    for row in cur.fetchall():
        print("  ", row)

conn.close()
