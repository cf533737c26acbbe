from functools import wraps
from typing import Callable, Literal, Optional, Protocol, Tuple

from ..analysis_state import ModelAnalysisState
from ..registry import RegistryInfo, registry_add, registry_tag
from ..ui import ModellingDisplay

CheckerResult = Literal["pass", "fail", "error", "NA"]
When = Literal["before", "after"]


class Checker(Protocol):
    """
    Check a model against its data. Checks that run "before" fitting see only
    the model and observations; "after" checks also see the FittedModel.
    """

    def __call__(
        self, state: ModelAnalysisState, display: ModellingDisplay | None = None
    ) -> Tuple[ModelAnalysisState, CheckerResult]:
        """
        Perform the check.

        Args:
            state: The analysis state of the model.
            display: Live display, used for logging into the UI.
        Returns:
            The state (with any diagnostics the check computed) and the result.
        """
        ...


def checker(
    checker_builder: Optional[Callable[..., Checker]] = None,
    *,
    when: When = "after",
) -> Callable[..., Checker]:
    """
    Register a checker builder and enforce the checker interface.

    Supports both ``@checker`` and ``@checker(when="before")``.
    """

    def decorate(cb: Callable[..., Checker]) -> Callable[..., Checker]:
        registry_info = RegistryInfo(
            type="checker", name=cb.__name__, metadata={"when": when}
        )

        @wraps(cb)
        def checker_wrapper(*args, **kwargs) -> Checker:
            check = cb(*args, **kwargs)

            @wraps(check)
            def checker_interface(
                state: ModelAnalysisState,
                display: ModellingDisplay | None = None,
            ) -> Tuple[ModelAnalysisState, CheckerResult]:
                if not isinstance(state, ModelAnalysisState):
                    raise TypeError("state must be an instance of ModelAnalysisState")
                if display is not None and not isinstance(display, ModellingDisplay):
                    raise TypeError("display must be an instance of ModellingDisplay")
                if when == "after" and not state.is_fitted:
                    raise ValueError(
                        f"Checker '{cb.__name__}' needs a fitted model; "
                        f"{state.model_name} has not been fitted."
                    )
                return check(state, display)

            registry_tag(cb, checker_interface, registry_info, *args, **kwargs)
            return checker_interface

        registry_add(checker_wrapper, registry_info)
        return checker_wrapper

    if checker_builder is None:
        return decorate
    return decorate(checker_builder)
