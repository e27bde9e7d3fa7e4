# checkout/services/cart_store.py
from __future__ import annotations

import logging
from dataclasses import replace
from typing import List, Optional

from checkout.services.checkout_types import CartLine, CartSnapshot

logger = logging.getLogger("checkout.cart")


class CartStore:
    """
    购物车（显式持有的状态对象）：

    - 只能通过 add_item / update_quantity / remove_item / clear 修改
    - 读取方拿到的是不可变 CartSnapshot
    - 不变量：所有行同属一个 store；加入其它门店的商品时整车替换（调用方应已让用户确认）
    - 购物车清空后解除门店绑定
    """

    def __init__(self) -> None:
        self._store_id: Optional[str] = None
        self._store_name: Optional[str] = None
        self._lines: List[CartLine] = []

    def snapshot(self) -> CartSnapshot:
        return CartSnapshot(
            store_id=self._store_id,
            store_name=self._store_name,
            lines=tuple(self._lines),
        )

    def add_item(self, store_id: str, store_name: str, line: CartLine) -> CartSnapshot:
        """加 1 件；line.quantity 被忽略，按“已有 +1 / 新增 = 1”处理"""
        if self._store_id and self._store_id != store_id:
            logger.info("cart store switched %s -> %s, cart replaced", self._store_id, store_id)
            self._lines = []

        self._store_id = store_id
        self._store_name = store_name

        for i, ln in enumerate(self._lines):
            if ln.store_product_id == line.store_product_id:
                self._lines[i] = replace(ln, quantity=ln.quantity + 1)
                break
        else:
            self._lines.append(replace(line, quantity=1))
        return self.snapshot()

    def update_quantity(self, store_product_id: str, quantity: int) -> CartSnapshot:
        if quantity <= 0:
            return self.remove_item(store_product_id)
        self._lines = [
            replace(ln, quantity=quantity) if ln.store_product_id == store_product_id else ln
            for ln in self._lines
        ]
        return self.snapshot()

    def remove_item(self, store_product_id: str) -> CartSnapshot:
        self._lines = [ln for ln in self._lines if ln.store_product_id != store_product_id]
        if not self._lines:
            self._store_id = None
            self._store_name = None
        return self.snapshot()

    def clear(self) -> CartSnapshot:
        self._store_id = None
        self._store_name = None
        self._lines = []
        return self.snapshot()
