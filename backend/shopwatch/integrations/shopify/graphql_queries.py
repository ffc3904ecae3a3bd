
# Inventory levels of one inventory item across locations, one page at a time.
# `quantities(names: ["available"])` replaced the old `available` scalar in 2023-10+.
INVENTORY_LEVELS_BY_ITEM = """
query InventoryLevelsByItem($id: ID!, $first: Int!, $after: String){
  inventoryItem(id: $id) {
    id
    inventoryLevels(first: $first, after: $after) {
      pageInfo { hasNextPage endCursor }
      edges {
        node {
          location { id name }
          quantities(names: ["available"]) { name quantity }
        }
      }
    }
  }
}
""".strip()


# Inventory item -> variant -> product (the webhook only carries the item id)
VARIANT_BY_INVENTORY_ITEM = """
query VariantByInventoryItem($id: ID!){
  inventoryItem(id: $id) {
    id
    variant {
      id
      title
      product { id title isGiftCard }
    }
  }
}
""".strip()


def inventory_item_gid(inventory_item_id: str) -> str:
    value = str(inventory_item_id).strip()
    if value.startswith("gid://"):
        return value
    return f"gid://shopify/InventoryItem/{value}"
