"""Centralised selectors for the Swiggy Instamart storefront."""

STOREFRONT_URL = "https://www.swiggy.com/instamart"

# ==== LOCATION ====
SET_GPS_BUTTON = "[data-testid='set-gps-button']"
TRY_AGAIN_TEXT = "Try Again"

# ==== NAVIGATION ====
CATEGORY_BUTTON = "button[aria-label=\"{name}\"]"
SUBCATEGORY_ITEMS = "div > ul > li"
SUBCATEGORY_ITEM = "li:has-text(\"{name}\")"
BACK_BUTTON = "[data-testid='simpleheader-back']"

# ==== SORTING ====
SORT_CHIP = "div[data-testid='dropdown-chip']:has-text('Sort By')"
SORT_OPTION_TEXT = "Discount (High To Low)"
SORT_OPTION_INPUT = "input[id=sort-chip-dropdown-2]"

# ==== PRODUCT GRID ====
DISCOUNT_LABEL = "[data-testid='item-offer-label-discount-text']"
PRODUCT_CARD_ANCESTOR = "xpath=ancestor::*[@data-testid='ItemWidgetContainer']"
