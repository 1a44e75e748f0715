"""Interface for the order listing capability consumed by order history.

The SkyFi client satisfies it; tests substitute a mock.
"""

import abc
from typing import Any, Dict, List, Union

class OrderSource(abc.ABC):
    """Anything able to list orders for a filter set."""

    @abc.abstractmethod
    async def list_orders(self, filters: Dict[str, Any]) -> Union[Dict[str, Any], List[Dict[str, Any]]]:
        """Lists orders matching `filters` (which include `limit` and `offset`).

        Returns:
            `{"orders": [...], "total": Optional[int]}`. A bare list of orders
            is also accepted by consumers.
        """
        pass
