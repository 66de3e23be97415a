"""HR Domain - Human Resources tools.

Example domain for employee management operations.
Demonstrates:
- A sub-server composed under the ``hr`` prefix
- Role and policy based authorization
- A JSON resource
"""

from typing import Any, Optional

from shared.errors import InvalidParamsError
from shared.logging import get_logger
from shared.models import AccessToken, AuthorizationRequirement
from mcp_server.builder import ServerBuilder

logger = get_logger(__name__)


# Sample data for mock implementation
MOCK_EMPLOYEES = {
    "E001": {
        "id": "E001",
        "name": "Alice Johnson",
        "email": "alice.johnson@company.com",
        "department": "Engineering",
        "position": "Senior Developer",
        "manager": "E010",
        "start_date": "2020-03-15",
        "status": "active"
    },
    "E002": {
        "id": "E002",
        "name": "Bob Smith",
        "email": "bob.smith@company.com",
        "department": "Engineering",
        "position": "Tech Lead",
        "manager": "E010",
        "start_date": "2019-06-01",
        "status": "active"
    },
    "E003": {
        "id": "E003",
        "name": "Carol Williams",
        "email": "carol.williams@company.com",
        "department": "HR",
        "position": "HR Manager",
        "manager": "E020",
        "start_date": "2018-01-10",
        "status": "active"
    },
}

MOCK_DEPARTMENTS = {
    "Engineering": {"head": "E010", "employee_count": 25, "budget": 2500000},
    "HR": {"head": "E020", "employee_count": 5, "budget": 500000},
    "Finance": {"head": "E030", "employee_count": 10, "budget": 800000},
    "Marketing": {"head": "E040", "employee_count": 15, "budget": 1200000},
}

HR_WRITE_POLICY = "hr_write"
HR_WRITE_SCOPE = "hr:write"


def get_employee(employee_id: str) -> dict[str, Any]:
    """Get detailed information about an employee by their ID."""
    employee = MOCK_EMPLOYEES.get(employee_id.upper())
    if not employee:
        raise InvalidParamsError(f"Employee {employee_id} not found")
    return employee


def search_employees(
    query: str = "",
    department: Optional[str] = None,
    limit: int = 10
) -> list[dict[str, Any]]:
    """Search for employees by name, department, or position."""
    query = query.lower()
    results = []
    for emp in MOCK_EMPLOYEES.values():
        if department and emp["department"].lower() != department.lower():
            continue

        if query:
            searchable = f"{emp['name']} {emp['position']} {emp['department']}".lower()
            if query not in searchable:
                continue

        results.append(emp)
        if len(results) >= limit:
            break

    return results


def get_department(department_name: str) -> dict[str, Any]:
    """Get a department's head, employee count, and budget."""
    for name, dept in MOCK_DEPARTMENTS.items():
        if name.lower() == department_name.lower():
            return {"name": name, **dept}
    raise InvalidParamsError(f"Department {department_name} not found")


def list_departments() -> list[str]:
    """List all departments in the organization."""
    return list(MOCK_DEPARTMENTS.keys())


def update_employee(
    employee_id: str,
    identity: AccessToken,
    position: Optional[str] = None,
    department: Optional[str] = None,
    manager: Optional[str] = None
) -> dict[str, Any]:
    """Update employee information. Requires the hr_admin role."""
    employee = dict(get_employee(employee_id))

    # Mock: the change is returned, not persisted
    changes = {"position": position, "department": department, "manager": manager}
    employee.update({k: v for k, v in changes.items() if v is not None})

    logger.info("Employee updated", employee_id=employee["id"], by=identity.subject)
    return {"success": True, "employee": employee}


def employee_directory() -> dict[str, str]:
    return {emp_id: emp["name"] for emp_id, emp in MOCK_EMPLOYEES.items()}


def can_write_hr(identity: AccessToken) -> bool:
    return HR_WRITE_SCOPE in identity.scopes


def create_hr_server() -> ServerBuilder:
    """Build the HR capabilities as a standalone server."""
    return (
        ServerBuilder(name="hr", version="1.0.0")
        .add_tool(get_employee)
        .add_tool(search_employees)
        .add_tool(get_department)
        .add_tool(list_departments)
        .add_tool(
            update_employee,
            authorization=AuthorizationRequirement(roles=["hr_admin"], policy=HR_WRITE_POLICY)
        )
        .add_resource(
            employee_directory,
            uri="resource://hr/directory",
            name="directory",
            description="Employee ids and names.",
            mime_type="application/json"
        )
    )


def register_hr_domain(builder: ServerBuilder) -> None:
    """Register the HR domain with the MCP server."""
    builder.with_policy(HR_WRITE_POLICY, can_write_hr)
    builder.import_server("hr", create_hr_server())
    logger.info("HR domain registered")
