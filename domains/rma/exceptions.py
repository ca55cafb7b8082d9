from __future__ import annotations


class CaseNotFound(Exception):
    """존재하지 않는 케이스. API 에서는 404, 웹훅에서는 조용히 무시."""

    def __init__(self, case_id=None):
        super().__init__(f"RMA case not found: {case_id}")
        self.case_id = case_id


class InvalidTransition(Exception):
    """상태 전이 규칙 위반. 케이스는 변경되지 않는다."""

    def __init__(self, action: str, current_status: str, message: str = ""):
        super().__init__(message or f"Cannot {action} while case is {current_status}")
        self.action = action
        self.current_status = current_status
