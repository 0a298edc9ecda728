from repairshop.schemas.tenant_security import (
    OutcomeView,
    ScenarioResultView,
    SecurityStatusResponse,
    VerificationReportResponse,
)
