def line(name="Installation", quantity=1, unit_price="1000", discount="0", discount_type="Percentage", **extra):
    """Line item payload as the API and document operations accept it."""
    data = {
        "item_type": "Service",
        "item_name": name,
        "quantity": quantity,
        "unit_price": unit_price,
        "discount": discount,
        "discount_type": discount_type,
    }
    data.update(extra)
    return data
