"""Built-in role tables used when the auto-scaler synthesizes members."""

from typing import Dict, List

from workforce.models import DepartmentType, MemberRole

DEFAULT_SPECIALIZATIONS = ["general"]
DEFAULT_MAX_CONCURRENT = 3
DEFAULT_CAPABILITIES = {"general": True}

ROLE_SPECIALIZATIONS: Dict[MemberRole, List[str]] = {
    MemberRole.BA: ["requirements", "analysis", "user-stories", "business-process"],
    MemberRole.PM: ["planning", "coordination", "risk-management", "stakeholder-management"],
    MemberRole.PO: ["product-vision", "prioritization", "backlog-management", "user-needs"],
    MemberRole.LEAD_TECHNICAL: ["architecture", "technical-leadership", "code-review", "mentoring"],
    MemberRole.LEAD_BA: ["business-analysis", "requirements-elicitation", "stakeholder-communication"],
    MemberRole.LEAD_DEV: ["development", "code-quality", "technical-mentoring", "team-leadership"],
    MemberRole.LEAD_TEST: ["testing-strategy", "quality-assurance", "test-automation", "team-mentoring"],
    MemberRole.DEVELOPER: ["coding", "debugging", "unit-testing", "code-review"],
    MemberRole.DEVOPS: ["ci-cd", "deployment", "infrastructure", "monitoring"],
    MemberRole.QA: ["testing", "test-automation", "quality-assurance", "bug-reporting"],
    MemberRole.SECURITY: ["security-analysis", "vulnerability-assessment", "compliance", "penetration-testing"],
}

ROLE_MAX_CONCURRENT: Dict[MemberRole, int] = {
    MemberRole.BA: 3,
    MemberRole.PM: 5,
    MemberRole.PO: 4,
    MemberRole.LEAD_TECHNICAL: 2,
    MemberRole.LEAD_BA: 2,
    MemberRole.LEAD_DEV: 2,
    MemberRole.LEAD_TEST: 2,
    MemberRole.DEVELOPER: 3,
    MemberRole.DEVOPS: 4,
    MemberRole.QA: 4,
    MemberRole.SECURITY: 3,
}

ROLE_CAPABILITIES: Dict[MemberRole, List[str]] = {
    MemberRole.BA: ["requirements_analysis", "user_stories", "process_modeling"],
    MemberRole.PM: ["project_planning", "risk_assessment", "resource_management"],
    MemberRole.PO: ["product_vision", "backlog_management", "stakeholder_management"],
    MemberRole.LEAD_TECHNICAL: ["architecture_design", "code_review", "technical_mentoring"],
    MemberRole.LEAD_DEV: ["development", "code_review", "team_coordination"],
    MemberRole.LEAD_TEST: ["test_strategy", "quality_assurance", "team_mentoring"],
    MemberRole.DEVELOPER: ["coding", "debugging", "unit_testing"],
    MemberRole.DEVOPS: ["ci_cd", "deployment", "infrastructure"],
    MemberRole.QA: ["testing", "test_automation", "quality_assurance"],
    MemberRole.SECURITY: ["security_analysis", "vulnerability_assessment", "compliance"],
}

# Rotation the scaler draws from when no quota is unmet. Repeats weight the
# rotation but least-populated selection makes them harmless.
DEPARTMENT_ROLE_ROTATION: Dict[DepartmentType, List[MemberRole]] = {
    DepartmentType.DEVELOPMENT: [MemberRole.DEVELOPER, MemberRole.LEAD_DEV, MemberRole.DEVELOPER],
    DepartmentType.DEVOPS: [MemberRole.DEVOPS, MemberRole.DEVOPS],
    DepartmentType.SECURITY: [MemberRole.SECURITY, MemberRole.SECURITY],
    DepartmentType.QA: [MemberRole.QA, MemberRole.LEAD_TEST, MemberRole.QA],
    DepartmentType.PRODUCT_MANAGER: [MemberRole.PM, MemberRole.PO, MemberRole.BA, MemberRole.LEAD_BA],
}

ROLE_DEPARTMENT_TYPES: Dict[MemberRole, List[DepartmentType]] = {
    MemberRole.BA: [DepartmentType.PRODUCT_MANAGER],
    MemberRole.PM: [DepartmentType.PRODUCT_MANAGER],
    MemberRole.PO: [DepartmentType.PRODUCT_MANAGER],
    MemberRole.LEAD_BA: [DepartmentType.PRODUCT_MANAGER],
    MemberRole.LEAD_TECHNICAL: [DepartmentType.DEVELOPMENT, DepartmentType.DEVOPS, DepartmentType.SECURITY],
    MemberRole.LEAD_DEV: [DepartmentType.DEVELOPMENT],
    MemberRole.LEAD_TEST: [DepartmentType.QA],
    MemberRole.DEVELOPER: [DepartmentType.DEVELOPMENT],
    MemberRole.DEVOPS: [DepartmentType.DEVOPS],
    MemberRole.QA: [DepartmentType.QA],
    MemberRole.SECURITY: [DepartmentType.SECURITY],
}


def specializations_for(role: MemberRole) -> List[str]:
    return list(ROLE_SPECIALIZATIONS.get(role, DEFAULT_SPECIALIZATIONS))


def max_concurrent_for(role: MemberRole) -> int:
    return ROLE_MAX_CONCURRENT.get(role, DEFAULT_MAX_CONCURRENT)


def capabilities_for(role: MemberRole) -> Dict[str, bool]:
    names = ROLE_CAPABILITIES.get(role)
    if not names:
        return dict(DEFAULT_CAPABILITIES)
    return {name: True for name in names}


def role_fits_department(role: MemberRole, department_type: DepartmentType) -> bool:
    return department_type in ROLE_DEPARTMENT_TYPES.get(role, [])
