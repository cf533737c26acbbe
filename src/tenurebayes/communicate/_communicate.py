from functools import wraps
from typing import Callable, List, Literal, Protocol, Tuple

from ..analysis_state import AnalysisState, ModelAnalysisState
from ..registry import RegistryInfo, registry_add, registry_tag
from ..ui import ModellingDisplay

CommunicateResult = Literal["pass", "fail", "error", "NA"]


class Communicator(Protocol):
    """Turn an analysis state into tables and plots for the reporting layer."""

    def __call__(
        self,
        state: AnalysisState,
        display: ModellingDisplay | None = None,
    ) -> Tuple[AnalysisState, CommunicateResult]:
        """
        Args:
            state: the analysis state holding fitted models and estimates.
            display: live display, if any.
        Returns:
            The state with the new outputs added and the result.
        """
        ...


def communicate(
    communicate_builder: Callable[..., Communicator],
) -> Callable[..., Communicator]:
    """
    Register a communicator builder and enforce the communicator interface.
    """
    registry_info = RegistryInfo(type="communicate", name=communicate_builder.__name__)

    @wraps(communicate_builder)
    def communicator_wrapper(*args, **kwargs) -> Communicator:
        communicator = communicate_builder(*args, **kwargs)

        @wraps(communicator)
        def communicator_interface(
            state: AnalysisState,
            display: ModellingDisplay | None = None,
        ) -> Tuple[AnalysisState, CommunicateResult]:
            if not isinstance(state, AnalysisState):
                raise TypeError("state must be an instance of AnalysisState")
            return communicator(state, display)

        registry_tag(
            communicate_builder, communicator_interface, registry_info, *args, **kwargs
        )
        return communicator_interface

    registry_add(communicator_wrapper, registry_info)
    return communicator_wrapper


def models_to_report(state: AnalysisState, best_model: bool) -> List[ModelAnalysisState]:
    """The best fitted model, or every fitted model."""
    if best_model:
        return [state.get_best_model()]
    return [m for m in state.models if m.is_fitted]
