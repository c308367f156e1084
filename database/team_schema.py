"""
Tenant schema applied to every team database.

Tables are listed in dependency order and declare their foreign keys inline,
so the whole list can be re-applied on an initialized database as a no-op.
"""
from typing import List, Tuple

TABLE_DEFINITIONS: List[Tuple[str, str]] = [
    ("customers", """
        CREATE TABLE IF NOT EXISTS customers (
            id SERIAL PRIMARY KEY,
            name VARCHAR(50) NOT NULL,
            phone VARCHAR(20) NOT NULL UNIQUE,
            address JSONB,
            gender VARCHAR(8),
            wechat VARCHAR(64),
            birthday DATE,
            follow_date DATE,
            balance NUMERIC(10, 2) NOT NULL DEFAULT 0.00,
            deleted_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """),
    ("brands", """
        CREATE TABLE IF NOT EXISTS brands (
            id SERIAL PRIMARY KEY,
            "order" INTEGER NOT NULL DEFAULT 0,
            name VARCHAR(50) NOT NULL,
            description VARCHAR(255),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """),
    ("categories", """
        CREATE TABLE IF NOT EXISTS categories (
            id SERIAL PRIMARY KEY,
            name VARCHAR(50) NOT NULL,
            description VARCHAR(255),
            icon VARCHAR(255),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """),
    ("suppliers", """
        CREATE TABLE IF NOT EXISTS suppliers (
            id SERIAL PRIMARY KEY,
            "order" INTEGER NOT NULL DEFAULT 0,
            name VARCHAR(100) NOT NULL,
            contact JSONB,
            status SMALLINT NOT NULL DEFAULT 1,
            level VARCHAR(30),
            type VARCHAR(30),
            remark TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """),
    ("supplier_categories", """
        CREATE TABLE IF NOT EXISTS supplier_categories (
            id SERIAL PRIMARY KEY,
            supplier_id INTEGER NOT NULL REFERENCES suppliers(id) ON DELETE CASCADE,
            category_id INTEGER NOT NULL REFERENCES categories(id) ON DELETE CASCADE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            UNIQUE (supplier_id, category_id)
        )
    """),
    ("products", """
        CREATE TABLE IF NOT EXISTS products (
            id SERIAL PRIMARY KEY,
            supplier_id INTEGER REFERENCES suppliers(id) ON DELETE SET NULL,
            brand_id INTEGER REFERENCES brands(id) ON DELETE SET NULL,
            category_id INTEGER REFERENCES categories(id) ON DELETE SET NULL,
            name VARCHAR(100) NOT NULL,
            description TEXT,
            code VARCHAR(50),
            image VARCHAR(255),
            sku VARCHAR(50),
            aliases JSONB,
            level VARCHAR(30),
            cost JSONB,
            price NUMERIC(10, 2) NOT NULL,
            stock INTEGER NOT NULL DEFAULT 0,
            logistics_status VARCHAR(50),
            logistics_details TEXT,
            tracking_number VARCHAR(50),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """),
    ("shops", """
        CREATE TABLE IF NOT EXISTS shops (
            id SERIAL PRIMARY KEY,
            unionid VARCHAR(64) UNIQUE,
            openid VARCHAR(64),
            account_no VARCHAR(50),
            wechat VARCHAR(64),
            avatar VARCHAR(255),
            nickname VARCHAR(50),
            phone VARCHAR(20),
            status SMALLINT NOT NULL DEFAULT 1,
            remark TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """),
    ("shop_account_types", """
        CREATE TABLE IF NOT EXISTS shop_account_types (
            id SERIAL PRIMARY KEY,
            shop_id INTEGER NOT NULL REFERENCES shops(id) ON DELETE CASCADE,
            category_id INTEGER NOT NULL REFERENCES categories(id) ON DELETE CASCADE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            UNIQUE (shop_id, category_id)
        )
    """),
    ("payment_platforms", """
        CREATE TABLE IF NOT EXISTS payment_platforms (
            id SERIAL PRIMARY KEY,
            "order" INTEGER NOT NULL,
            name VARCHAR(50) NOT NULL,
            description VARCHAR(255),
            status SMALLINT NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """),
    ("sales_records", """
        CREATE TABLE IF NOT EXISTS sales_records (
            id SERIAL PRIMARY KEY,
            customer_id INTEGER REFERENCES customers(id) ON DELETE SET NULL,
            source_id INTEGER REFERENCES shops(id) ON DELETE SET NULL,
            guide_id INTEGER,
            payment_type SMALLINT NOT NULL DEFAULT 0,
            deal_date DATE,
            receivable NUMERIC(10, 2) NOT NULL DEFAULT 0.00,
            received NUMERIC(10, 2) NOT NULL DEFAULT 0.00,
            pending NUMERIC(10, 2) NOT NULL DEFAULT 0.00,
            platform_id INTEGER REFERENCES payment_platforms(id) ON DELETE SET NULL,
            deal_shop VARCHAR(50),
            order_status JSONB NOT NULL DEFAULT '["normal"]'::jsonb,
            followup_date DATE,
            remark TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """),
    ("sales_record_products", """
        CREATE TABLE IF NOT EXISTS sales_record_products (
            id SERIAL PRIMARY KEY,
            sales_record_id INTEGER NOT NULL REFERENCES sales_records(id) ON DELETE CASCADE,
            product_id INTEGER NOT NULL REFERENCES products(id) ON DELETE CASCADE,
            quantity INTEGER NOT NULL DEFAULT 1,
            price NUMERIC(10, 2),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """),
    ("after_sales_records", """
        CREATE TABLE IF NOT EXISTS after_sales_records (
            id SERIAL PRIMARY KEY,
            sales_record_id INTEGER NOT NULL REFERENCES sales_records(id) ON DELETE CASCADE,
            type VARCHAR(20) NOT NULL
                CHECK (type IN ('return', 'exchange', 'reship', 'price_adjustment')),
            previous_after_sale_id INTEGER REFERENCES after_sales_records(id) ON DELETE SET NULL,
            date DATE,
            reason TEXT,
            product_price NUMERIC(10, 2),
            progress VARCHAR(20) NOT NULL DEFAULT 'pending'
                CHECK (progress IN ('pending', 'processing', 'done')),
            transaction_type VARCHAR(10) CHECK (transaction_type IN ('income', 'expense')),
            platform_id INTEGER REFERENCES payment_platforms(id) ON DELETE SET NULL,
            amount NUMERIC(10, 2),
            pending NUMERIC(10, 2) NOT NULL DEFAULT 0.00,
            remark TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """),
    ("after_sales_original_products", """
        CREATE TABLE IF NOT EXISTS after_sales_original_products (
            id SERIAL PRIMARY KEY,
            after_sales_id INTEGER NOT NULL REFERENCES after_sales_records(id) ON DELETE CASCADE,
            product_id INTEGER NOT NULL REFERENCES products(id) ON DELETE CASCADE,
            quantity INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """),
    ("after_sales_replacement_products", """
        CREATE TABLE IF NOT EXISTS after_sales_replacement_products (
            id SERIAL PRIMARY KEY,
            after_sales_id INTEGER NOT NULL REFERENCES after_sales_records(id) ON DELETE CASCADE,
            product_id INTEGER NOT NULL REFERENCES products(id) ON DELETE CASCADE,
            quantity INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """),
    ("logistics_records", """
        CREATE TABLE IF NOT EXISTS logistics_records (
            id SERIAL PRIMARY KEY,
            tracking_number VARCHAR(50),
            is_queryable BOOLEAN NOT NULL DEFAULT TRUE,
            customer_tail_number VARCHAR(20),
            company VARCHAR(50),
            details TEXT,
            status VARCHAR(50),
            record_id INTEGER NOT NULL,
            record_type VARCHAR(20) NOT NULL
                CHECK (record_type IN ('SalesRecord', 'AfterSalesRecord')),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """),
    ("logistics_products", """
        CREATE TABLE IF NOT EXISTS logistics_products (
            id SERIAL PRIMARY KEY,
            logistics_id INTEGER NOT NULL REFERENCES logistics_records(id) ON DELETE CASCADE,
            product_id INTEGER NOT NULL REFERENCES products(id) ON DELETE CASCADE,
            quantity INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """),
    ("shop_follower_growth", """
        CREATE TABLE IF NOT EXISTS shop_follower_growth (
            id SERIAL PRIMARY KEY,
            shop_id INTEGER NOT NULL REFERENCES shops(id) ON DELETE CASCADE,
            date DATE NOT NULL,
            total INTEGER NOT NULL,
            deducted INTEGER NOT NULL,
            daily_increase INTEGER NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            UNIQUE (shop_id, date)
        )
    """),
]

INDEX_DEFINITIONS: List[str] = [
    "CREATE INDEX IF NOT EXISTS idx_customers_wechat ON customers (wechat)",
    "CREATE INDEX IF NOT EXISTS idx_customers_deleted_at ON customers (deleted_at)",
    'CREATE INDEX IF NOT EXISTS idx_brands_order ON brands ("order")',
    "CREATE INDEX IF NOT EXISTS idx_brands_name ON brands (name)",
    "CREATE INDEX IF NOT EXISTS idx_categories_name ON categories (name)",
    "CREATE INDEX IF NOT EXISTS idx_suppliers_name ON suppliers (name)",
    "CREATE INDEX IF NOT EXISTS idx_suppliers_status ON suppliers (status)",
    "CREATE INDEX IF NOT EXISTS idx_products_name ON products (name)",
    "CREATE INDEX IF NOT EXISTS idx_products_code ON products (code)",
    "CREATE INDEX IF NOT EXISTS idx_products_supplier_id ON products (supplier_id)",
    "CREATE INDEX IF NOT EXISTS idx_products_brand_id ON products (brand_id)",
    "CREATE INDEX IF NOT EXISTS idx_products_category_id ON products (category_id)",
    "CREATE INDEX IF NOT EXISTS idx_shops_openid ON shops (openid)",
    "CREATE INDEX IF NOT EXISTS idx_shops_wechat ON shops (wechat)",
    "CREATE INDEX IF NOT EXISTS idx_shops_status ON shops (status)",
    'CREATE INDEX IF NOT EXISTS idx_payment_platforms_order ON payment_platforms ("order")',
    "CREATE INDEX IF NOT EXISTS idx_payment_platforms_status ON payment_platforms (status)",
    "CREATE INDEX IF NOT EXISTS idx_sales_records_customer_id ON sales_records (customer_id)",
    "CREATE INDEX IF NOT EXISTS idx_sales_records_source_id ON sales_records (source_id)",
    "CREATE INDEX IF NOT EXISTS idx_sales_records_guide_id ON sales_records (guide_id)",
    "CREATE INDEX IF NOT EXISTS idx_sales_records_deal_date ON sales_records (deal_date)",
    "CREATE INDEX IF NOT EXISTS idx_sales_records_platform_id ON sales_records (platform_id)",
    "CREATE INDEX IF NOT EXISTS idx_after_sales_sales_record_id ON after_sales_records (sales_record_id)",
    "CREATE INDEX IF NOT EXISTS idx_after_sales_type ON after_sales_records (type)",
    "CREATE INDEX IF NOT EXISTS idx_after_sales_date ON after_sales_records (date)",
    "CREATE INDEX IF NOT EXISTS idx_after_sales_progress ON after_sales_records (progress)",
    "CREATE INDEX IF NOT EXISTS idx_logistics_tracking_number ON logistics_records (tracking_number)",
    "CREATE INDEX IF NOT EXISTS idx_logistics_record ON logistics_records (record_id, record_type)",
    "CREATE INDEX IF NOT EXISTS idx_logistics_company ON logistics_records (company)",
    "CREATE INDEX IF NOT EXISTS idx_follower_growth_date ON shop_follower_growth (date)",
]


def table_names() -> List[str]:
    return [name for name, _ in TABLE_DEFINITIONS]
