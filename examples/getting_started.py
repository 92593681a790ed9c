"""
Getting Started with RelQL

This example builds a GraphQL API over a small DuckDB database whose tables
are linked by foreign keys, and serves it with FastAPI.
"""

import logging

import duckdb
from relql import RelQL


def create_sample_database():
    """Create departments and employees linked by a foreign key."""
    conn = duckdb.connect(":memory:")

    conn.execute("""
        CREATE TABLE departments (
            id INTEGER PRIMARY KEY,
            name VARCHAR NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE employees (
            id INTEGER PRIMARY KEY,
            department_id INTEGER REFERENCES departments(id),
            name VARCHAR NOT NULL,
            level ENUM('junior', 'senior', 'lead') NOT NULL,
            salary DECIMAL(10, 2),
            hire_date DATE,
            skills JSON
        )
    """)

    conn.execute("""
        INSERT INTO departments VALUES (1, 'Engineering'), (2, 'Sales')
    """)

    conn.execute("""
        INSERT INTO employees VALUES
        (1, 1, 'Alice Johnson', 'lead', 95000, '2021-01-15', '["python", "sql"]'),
        (2, 2, 'Bob Smith', 'senior', 75000, '2020-06-01', '["negotiation"]'),
        (3, 1, 'Charlie Brown', 'junior', 105000, '2019-03-20', NULL)
    """)

    return conn


def main():
    """Basic RelQL usage example."""
    logging.basicConfig(level=logging.INFO)

    conn = create_sample_database()
    server = RelQL(conn, max_query_depth=5)

    print("GraphQL API created!")
    print("\nAvailable queries:")
    print("  - employees(where: {...}, order_by: {...}, limit: N, offset: N)")
    print("  - employeesSingle(where: {...})")
    print("  - departments / departmentsSingle")
    print("\nAvailable mutations:")
    print("  - insertIntoEmployees, insertIntoEmployeesSingle, updateEmployees, deleteFromEmployees")

    print("\nExample GraphQL queries you can run:\n")

    print("1. Senior staff with their department:")
    print("""
query {
  employees(where: { level_in: [senior, lead] }, order_by: { salary: DESC }) {
    name
    salary
    department { name }
  }
}
    """)

    print("2. Departments with their two newest hires:")
    print("""
query {
  departments {
    name
    employees(order_by: { hire_date: DESC }, limit: 2) {
      ... on EmployeesFields { name hire_date skills }
    }
  }
}
    """)

    print("3. Promote an employee:")
    print("""
mutation {
  updateEmployees(set: { level: senior }, where: { id: 3 }) {
    id
    level
  }
}
    """)

    print("\nStarting GraphQL server...")
    print("   Visit http://localhost:8000/graphql to explore your API")
    print("   Press Ctrl+C to stop\n")

    server.serve(port=8000)


if __name__ == "__main__":
    main()
