"""
LangChain prompt templates for StoreLens question → SQL translation.
"""
from langchain_core.prompts import FewShotPromptTemplate, PromptTemplate

from models.table import SchemaContext, TableDescriptor

# ── Few-shot examples ─────────────────────────────────────────────────────────
# Every example is SELECT-only, scoped with store_id = $1 and carries a LIMIT.

FEW_SHOT_EXAMPLES = [
    {
        "question": "What is my total revenue?",
        "sql": "SELECT SUM(total) AS total_revenue FROM orders WHERE store_id = $1 "
               "AND status IN ('completed', 'processing') LIMIT 1",
        "explanation": "Sums the total column for completed and processing orders for this store.",
    },
    {
        "question": "What was my revenue last month?",
        "sql": "SELECT SUM(total) AS monthly_revenue FROM orders WHERE store_id = $1 "
               "AND status IN ('completed', 'processing') "
               "AND date_created >= DATE_TRUNC('month', NOW()) - INTERVAL '1 month' "
               "AND date_created < DATE_TRUNC('month', NOW()) LIMIT 1",
        "explanation": "Sums revenue for the previous calendar month using date_trunc boundaries.",
    },
    {
        "question": "Show me daily revenue for the last 7 days",
        "sql": "SELECT DATE(date_created) AS day, SUM(total) AS daily_revenue FROM orders "
               "WHERE store_id = $1 AND status IN ('completed', 'processing') "
               "AND date_created >= NOW() - INTERVAL '7 days' "
               "GROUP BY DATE(date_created) ORDER BY day ASC LIMIT 7",
        "explanation": "Groups revenue by day for the last 7 days, ordered chronologically. Chart: line of daily_revenue by day.",
    },
    {
        "question": "What is my average order value?",
        "sql": "SELECT ROUND(AVG(total), 2) AS avg_order_value FROM orders WHERE store_id = $1 "
               "AND status IN ('completed', 'processing') LIMIT 1",
        "explanation": "Calculates the average total across all completed/processing orders.",
    },
    {
        "question": "What are my top 10 selling products?",
        "sql": "SELECT p.name, SUM(oi.quantity) AS total_sold, SUM(oi.total) AS total_revenue "
               "FROM order_items oi JOIN products p ON oi.product_id = p.id AND p.store_id = $1 "
               "JOIN orders o ON oi.order_id = o.id AND o.store_id = $1 "
               "WHERE oi.store_id = $1 AND o.status IN ('completed', 'processing') "
               "GROUP BY p.name ORDER BY total_sold DESC LIMIT 10",
        "explanation": "Joins order_items with products to get top sellers by quantity. Chart: bar of total_sold by name.",
    },
    {
        "question": "Which product categories generate the most revenue?",
        "sql": "SELECT p.category_name, SUM(oi.total) AS category_revenue "
               "FROM order_items oi JOIN products p ON oi.product_id = p.id AND p.store_id = $1 "
               "JOIN orders o ON oi.order_id = o.id AND o.store_id = $1 "
               "WHERE oi.store_id = $1 AND o.status IN ('completed', 'processing') "
               "AND p.category_name IS NOT NULL GROUP BY p.category_name "
               "ORDER BY category_revenue DESC LIMIT 20",
        "explanation": "Groups order_items revenue by product category. Chart: pie of category_revenue by category_name.",
    },
    {
        "question": "How many products do I have in stock?",
        "sql": "SELECT COUNT(*) AS in_stock_count FROM products WHERE store_id = $1 "
               "AND stock_status = 'instock' AND status = 'publish' LIMIT 1",
        "explanation": "Counts published products with instock status.",
    },
    {
        "question": "How many new vs returning customers do I have?",
        "sql": "SELECT CASE WHEN order_count = 1 THEN 'New' ELSE 'Returning' END AS customer_type, "
               "COUNT(*) AS customer_count FROM customers WHERE store_id = $1 AND order_count > 0 "
               "GROUP BY customer_type LIMIT 2",
        "explanation": "Classifies customers as New (1 order) or Returning (2+ orders). Chart: doughnut of customer_count by customer_type.",
    },
    {
        "question": "Who are my top 10 customers by spending?",
        "sql": "SELECT display_name, total_spent, order_count FROM customers WHERE store_id = $1 "
               "AND order_count > 0 ORDER BY total_spent DESC LIMIT 10",
        "explanation": "Lists customers by total_spent descending. Uses display_name (not email) to avoid PII.",
    },
    {
        "question": "How many customers placed their first order this month?",
        "sql": "SELECT COUNT(*) AS new_customers FROM customers WHERE store_id = $1 "
               "AND first_order_date >= DATE_TRUNC('month', NOW()) LIMIT 1",
        "explanation": "Counts customers whose first_order_date is in the current month.",
    },
    {
        "question": "How many orders did I get today?",
        "sql": "SELECT COUNT(*) AS order_count FROM orders WHERE store_id = $1 "
               "AND date_created >= DATE_TRUNC('day', NOW()) LIMIT 1",
        "explanation": "Counts orders created since the start of today (UTC).",
    },
    {
        "question": "What is the breakdown of orders by status?",
        "sql": "SELECT status, COUNT(*) AS order_count FROM orders WHERE store_id = $1 "
               "GROUP BY status ORDER BY order_count DESC LIMIT 100",
        "explanation": "Groups all orders by status for this store. Chart: bar of order_count by status.",
    },
    {
        "question": "Which payment methods are most popular?",
        "sql": "SELECT payment_method, COUNT(*) AS usage_count FROM orders WHERE store_id = $1 "
               "AND payment_method IS NOT NULL GROUP BY payment_method "
               "ORDER BY usage_count DESC LIMIT 10",
        "explanation": "Counts orders by payment method, excluding nulls.",
    },
]

example_prompt = PromptTemplate(
    input_variables=["question", "sql", "explanation"],
    template='Q: "{question}"\nSQL: {sql}\nExplanation: {explanation}',
)

# ── Fixed sections ────────────────────────────────────────────────────────────

CRITICAL_RULES = """\
## Critical Rules
1. ALWAYS include `WHERE store_id = $1` in EVERY query for tenant isolation. The store_id value is bound as parameter $1.
2. Only generate a single SELECT query. NEVER use INSERT, UPDATE, DELETE, DROP, ALTER, CREATE, TRUNCATE, GRANT, or REVOKE.
3. Use `LIMIT` on all queries. Default to LIMIT 100 for list queries, LIMIT 1 for aggregate queries.
4. For revenue calculations, filter by `status IN ('completed', 'processing')` to exclude cancelled/refunded orders.
5. Use PostgreSQL date functions: DATE_TRUNC, NOW(), INTERVAL for time-based queries.
6. When joining tables, include `store_id = $1` conditions on ALL joined tables.
7. NEVER return raw customer emails or PII. Use display_name for customer identification.
8. Round monetary values to 2 decimal places with ROUND(value, 2).
9. Order results meaningfully (e.g., by revenue DESC, by date ASC).
10. Never use UNION, INTERSECT or EXCEPT. Never put values from the question into the SQL text; use $2, $3, ... and list them in "params"."""

RESPONSE_FORMAT = """\
## Response Format
You MUST respond with valid JSON in this exact format:
{
  "sql": "SELECT ... FROM ... WHERE store_id = $1 ...",
  "params": [],
  "explanation": "Brief explanation of what the query does",
  "chartSpec": {
    "type": "bar|line|pie|doughnut|table",
    "title": "Chart title",
    "xLabel": "X-axis label (for bar/line)",
    "yLabel": "Y-axis label (for bar/line)",
    "dataKey": "column name for data values",
    "labelKey": "column name for labels"
  }
}

Always use $1 as the store_id placeholder. The system injects the actual value as a query parameter.
Set chartSpec to null for simple aggregate queries that return a single number.
Use "table" type for multi-column result sets that don't suit a chart."""

SYSTEM_TEMPLATE = """\
You are a WooCommerce analytics assistant. You convert natural language questions about store data into PostgreSQL SQL queries.

## Database Schema
You have access to a PostgreSQL database with these tables:

{schema_text}

{metadata_text}

{rules}

{response_format}

{examples}
"""

system_prompt = PromptTemplate(
    input_variables=["schema_text", "metadata_text", "rules", "response_format", "examples"],
    template=SYSTEM_TEMPLATE,
)

examples_prompt = FewShotPromptTemplate(
    examples=FEW_SHOT_EXAMPLES,
    example_prompt=example_prompt,
    prefix="## Example Questions and SQL",
    suffix="",
    input_variables=[],
    example_separator="\n\n",
)


# ── Builders ──────────────────────────────────────────────────────────────────

def format_table(table: TableDescriptor) -> str:
    cols = []
    for c in table.columns:
        desc = c.semantic_type.upper()
        if c.values:
            desc += " - " + "|".join(c.values)
        if c.note:
            desc += " - DO NOT SELECT"
        cols.append(f"{c.name} ({desc})")
    lines = [f"### {table.name}", "Columns: " + ", ".join(cols)]
    lines += [f"Note: {c.name} is {c.note}." for c in table.columns if c.note]
    return "\n".join(lines)


def format_metadata(context: SchemaContext) -> str:
    lines = [
        "## Store Metadata",
        "- Store ID: Provided as query parameter $1. Always use $1 in WHERE clauses.",
        f"- Store currency: {context.currency}",
    ]
    if context.degraded:
        lines.append("- Store statistics: unavailable")
        return "\n".join(lines)

    for table in context.tables:
        if table.row_count is not None:
            lines.append(f"- Total {table.name}: {table.row_count}")
    if context.earliest_order_date and context.latest_order_date:
        lines.append(f"- Date range available: {context.earliest_order_date} to {context.latest_order_date}")
    else:
        lines.append("- Date range available: No orders yet")
    return "\n".join(lines)


def build_system_prompt(context: SchemaContext) -> str:
    """Deterministic for a given context: same context, same prompt."""
    return system_prompt.format(
        schema_text="\n\n".join(format_table(t) for t in context.tables),
        metadata_text=format_metadata(context),
        rules=CRITICAL_RULES,
        response_format=RESPONSE_FORMAT,
        examples=examples_prompt.format(),
    ).strip()
