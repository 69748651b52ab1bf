"""Search descriptor generation over the static facet tables.

A single query on the source site is capped at a fixed page depth, so
popular facet combinations are partitioned further (price, bedrooms, area)
until each partition fits under that ceiling.
"""

import logging
import random
from collections.abc import Sequence

from casa_scout.models.pydantic_models import SearchDescriptor

logger = logging.getLogger(__name__)

# (slug, display name)
LOCATIONS: tuple[tuple[str, str], ...] = (
    ("distrito-federal", "Ciudad de México"),
    ("estado-de-mexico", "Estado de México"),
    ("jalisco", "Jalisco"),
    ("nuevo-leon", "Nuevo León"),
    ("puebla", "Puebla"),
    ("queretaro", "Querétaro"),
    ("guanajuato", "Guanajuato"),
    ("yucatan", "Yucatán"),
    ("quintana-roo", "Quintana Roo"),
    ("veracruz", "Veracruz"),
    ("chihuahua", "Chihuahua"),
    ("coahuila", "Coahuila"),
    ("tamaulipas", "Tamaulipas"),
    ("baja-california", "Baja California"),
    ("sinaloa", "Sinaloa"),
    ("sonora", "Sonora"),
    ("san-luis-potosi", "San Luis Potosí"),
    ("aguascalientes", "Aguascalientes"),
    ("morelos", "Morelos"),
    ("hidalgo", "Hidalgo"),
)

PROPERTY_TYPES: tuple[tuple[str, str], ...] = (
    ("casas", "Casas"),
    ("departamentos", "Departamentos"),
    ("terrenos", "Terrenos"),
    ("locales", "Locales Comerciales"),
    ("oficinas", "Oficinas"),
    ("bodegas", "Bodegas"),
)

OPERATIONS: tuple[tuple[str, str], ...] = (
    ("venta", "Venta"),
    ("renta", "Renta"),
)

# (min, max, label) in MXN
SALE_PRICE_BANDS: tuple[tuple[int, int, str], ...] = (
    (0, 500_000, "0-500k"),
    (500_000, 1_000_000, "500k-1M"),
    (1_000_000, 1_500_000, "1M-1.5M"),
    (1_500_000, 2_000_000, "1.5M-2M"),
    (2_000_000, 3_000_000, "2M-3M"),
    (3_000_000, 5_000_000, "3M-5M"),
    (5_000_000, 10_000_000, "5M-10M"),
    (10_000_000, 20_000_000, "10M-20M"),
)

RENT_PRICE_BANDS: tuple[tuple[int, int, str], ...] = (
    (0, 5_000, "0-5k"),
    (5_000, 10_000, "5k-10k"),
    (10_000, 15_000, "10k-15k"),
    (15_000, 20_000, "15k-20k"),
    (20_000, 30_000, "20k-30k"),
    (30_000, 50_000, "30k-50k"),
    (50_000, 100_000, "50k-100k"),
)

BEDROOM_OPTIONS: tuple[tuple[int, str], ...] = (
    (1, "1 recámara"),
    (2, "2 recámaras"),
    (3, "3 recámaras"),
    (4, "4+ recámaras"),
)

AREA_BANDS: tuple[tuple[int, int, str], ...] = (
    (0, 100, "0-100m²"),
    (100, 200, "100-200m²"),
    (200, 500, "200-500m²"),
    (500, 1000, "500-1000m²"),
)

# (query template, description)
SPECIAL_SEARCHES: tuple[tuple[str, str], ...] = (
    ("/casas/venta/_CONSTRUCTION_new", "Casas nuevas en venta"),
    ("/departamentos/venta/_CONSTRUCTION_new", "Departamentos nuevos en venta"),
    ("/casas/venta/_AMENITIES_pool", "Casas con alberca"),
    ("/departamentos/_AMENITIES_gym", "Departamentos con gimnasio"),
    ("/casas/venta/_AMENITIES_security", "Casas con seguridad"),
)

TOP_LOCATION_COUNT = 10


def _price_bands(operation: str) -> tuple[tuple[int, int, str], ...]:
    return SALE_PRICE_BANDS if operation == "venta" else RENT_PRICE_BANDS


def generate_descriptors() -> list[SearchDescriptor]:
    """Generate the full, ordered descriptor sequence.

    Pure function of the static facet tables: two calls return equal
    sequences. Order is nationwide, location, price band, bedrooms,
    location+price for top locations, then area and special catch-alls.

    Returns:
        List of SearchDescriptor.
    """
    descriptors: list[SearchDescriptor] = []

    # Nationwide
    for type_id, type_name in PROPERTY_TYPES:
        for op_id, op_name in OPERATIONS:
            descriptors.append(
                SearchDescriptor(
                    facets={"property_type": type_id, "operation": op_id},
                    query_template=f"/{type_id}/{op_id}/",
                    description=f"{type_name} en {op_name} - Nacional",
                )
            )

    # Location x property type x operation
    for loc_id, loc_name in LOCATIONS:
        for type_id, type_name in PROPERTY_TYPES:
            for op_id, op_name in OPERATIONS:
                descriptors.append(
                    SearchDescriptor(
                        facets={
                            "location": loc_id,
                            "property_type": type_id,
                            "operation": op_id,
                        },
                        query_template=f"/{type_id}/{op_id}/{loc_id}/",
                        description=f"{type_name} en {op_name} - {loc_name}",
                    )
                )

    # Price bands, independent of location
    for op_id, op_name in OPERATIONS:
        for price_min, price_max, label in _price_bands(op_id):
            for type_id, type_name in PROPERTY_TYPES:
                descriptors.append(
                    SearchDescriptor(
                        facets={
                            "property_type": type_id,
                            "operation": op_id,
                            "price_min": price_min,
                            "price_max": price_max,
                        },
                        query_template=f"/{type_id}/{op_id}/_PriceRange_{price_min}-{price_max}",
                        description=f"{type_name} en {op_name} - {label}",
                    )
                )

    # Bedroom counts for houses and apartments
    for type_id, type_name in PROPERTY_TYPES[:2]:
        for op_id, op_name in OPERATIONS:
            for bedrooms, label in BEDROOM_OPTIONS:
                descriptors.append(
                    SearchDescriptor(
                        facets={
                            "property_type": type_id,
                            "operation": op_id,
                            "bedrooms": bedrooms,
                        },
                        query_template=f"/{type_id}/{op_id}/_BEDROOMS_{bedrooms}",
                        description=f"{type_name} en {op_name} - {label}",
                    )
                )

    # Location + price for the busiest locations
    for loc_id, loc_name in LOCATIONS[:TOP_LOCATION_COUNT]:
        descriptors.append(
            SearchDescriptor(
                facets={
                    "location": loc_id,
                    "property_type": "casas",
                    "price_min": 0,
                    "price_max": 2_000_000,
                },
                query_template=f"/casas/{loc_id}/_PriceRange_0-2000000",
                description=f"Casas económicas en {loc_name} (0-2M)",
            )
        )
        descriptors.append(
            SearchDescriptor(
                facets={
                    "location": loc_id,
                    "property_type": "departamentos",
                    "operation": "renta",
                    "price_min": 5_000,
                    "price_max": 20_000,
                },
                query_template=f"/departamentos/renta/{loc_id}/_PriceRange_5000-20000",
                description=f"Departamentos en renta en {loc_name} (5k-20k)",
            )
        )

    # Area bands
    for area_min, area_max, label in AREA_BANDS:
        descriptors.append(
            SearchDescriptor(
                facets={
                    "property_type": "casas",
                    "operation": "venta",
                    "area_min": area_min,
                    "area_max": area_max,
                },
                query_template=f"/casas/venta/_AREA_{area_min}-{area_max}",
                description=f"Casas en venta por tamaño {label}",
            )
        )

    # Special catch-alls
    for template, description in SPECIAL_SEARCHES:
        descriptors.append(
            SearchDescriptor(
                facets={"special": template.rsplit("_", 1)[-1]},
                query_template=template,
                description=description,
            )
        )

    return descriptors


def select_descriptors(
    descriptors: Sequence[SearchDescriptor],
    max_searches: int | None = None,
    shuffle: bool = True,
    rng: random.Random | None = None,
) -> list[SearchDescriptor]:
    """Shuffle and/or truncate a descriptor sequence to a search budget.

    Args:
        descriptors: Full descriptor sequence.
        max_searches: Maximum number of descriptors to keep. None keeps all.
        shuffle: Shuffle before truncating.
        rng: Random source, for reproducible shuffles.

    Returns:
        New list; the input is not modified.
    """
    selected = list(descriptors)
    if shuffle:
        (rng or random.Random()).shuffle(selected)
    if max_searches is not None:
        selected = selected[:max_searches]

    logger.info(
        "Selected %d searches out of %d possible combinations",
        len(selected),
        len(descriptors),
    )
    return selected
