"""
Row transformations applied between source and target
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import importlib
import logging

import pandas as pd

from core.exceptions import ConfigurationError, TransformationError

logger = logging.getLogger(__name__)


class Transformer(ABC):
    """Map a batch of rows to a new batch of rows"""

    @abstractmethod
    def apply(self, frame: pd.DataFrame, props: Dict[str, Any]) -> pd.DataFrame:
        pass


class ChainedTransformer(Transformer):
    """Apply transformers in order"""

    def __init__(self, transformers: List[Transformer]):
        self.transformers = transformers

    def apply(self, frame: pd.DataFrame, props: Dict[str, Any]) -> pd.DataFrame:
        for transformer in self.transformers:
            frame = transformer.apply(frame, props)
        return frame


class QueryTransformer(Transformer):
    """
    Filter rows with a pandas query expression.

    The expression comes from the constructor or the
    "transformer.query" property.
    """

    PROP_QUERY = "transformer.query"

    def __init__(self, query: Optional[str] = None):
        self.query = query

    def apply(self, frame: pd.DataFrame, props: Dict[str, Any]) -> pd.DataFrame:
        query = self.query or props.get(self.PROP_QUERY)
        if not query:
            raise ConfigurationError(
                "QueryTransformer needs a query expression",
                context={"property": self.PROP_QUERY}
            )
        if frame.empty:
            return frame
        try:
            result = frame.query(query)
        except Exception as e:
            raise TransformationError(
                "Query transformation failed",
                context={"query": query, "columns": list(frame.columns)},
                original_exception=e
            )
        logger.info(f"Query transformer kept {len(result)}/{len(frame)} rows")
        return result.reset_index(drop=True)


def load_transformers(class_names: List[str]) -> Optional[Transformer]:
    """
    Instantiate transformers from dotted class paths.

    Returns:
        None when no class names are given, the single transformer, or a
        ChainedTransformer over all of them
    """
    if not class_names:
        return None

    transformers = []
    for class_name in class_names:
        module_name, _, attr = class_name.rpartition(".")
        try:
            cls = getattr(importlib.import_module(module_name), attr)
        except (ImportError, AttributeError, ValueError) as e:
            raise ConfigurationError(
                f"Could not load transformer class {class_name}",
                context={"class_name": class_name},
                original_exception=e
            )
        transformers.append(cls())

    if len(transformers) == 1:
        return transformers[0]
    return ChainedTransformer(transformers)
