"""
SQL statements executed inside a transaction or as partitioned DML.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping


@dataclass(frozen=True)
class Statement:
    """
    A SQL statement with named parameters.
    
    Attributes:
        sql: SQL text
        params: Parameter name -> value
    """
    sql: str
    params: Mapping[str, Any] = field(default_factory=dict)
    
    def __post_init__(self):
        if not self.sql or not self.sql.strip():
            raise ValueError("Statement SQL must not be empty")
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))
    
    @classmethod
    def of(cls, sql: str, **params: Any) -> "Statement":
        """Create a statement, binding keyword arguments as parameters."""
        return cls(sql, params)
    
    def __hash__(self):
        return hash(self.sql)
    
    def __eq__(self, other):
        if not isinstance(other, Statement):
            return NotImplemented
        return self.sql == other.sql and dict(self.params) == dict(other.params)
    
    def __repr__(self):
        return f"Statement({self.sql!r}, params={dict(self.params)!r})"
