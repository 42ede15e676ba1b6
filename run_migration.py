import os

import psycopg2

SCHEMA_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "backend", "app", "core", "schema.sql")


def run_migrations():
    """
    在 Supabase Postgres 上执行 schema.sql（幂等，全部使用 if not exists）。

    中文注释: 连接串从 DATABASE_URL 读取，严禁把数据库密码写进仓库。
    """
    dsn = (os.environ.get("DATABASE_URL") or "").strip()
    if not dsn:
        raise SystemExit("DATABASE_URL is required")

    print("Connecting to Supabase Database...")
    conn = psycopg2.connect(dsn)
    try:
        conn.autocommit = True
        with open(SCHEMA_PATH, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        with conn.cursor() as cur:
            print(f"Executing {SCHEMA_PATH} ...")
            cur.execute(schema_sql)
        print("Database migration completed successfully!")
    finally:
        conn.close()


if __name__ == "__main__":
    run_migrations()
