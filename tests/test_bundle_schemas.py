from schemas.bundle_schemas import validate_layout_settings


def test_grid_breakpoints_are_checked():
    settings = {"gridSettings": {"productsPerRow": {"mobile": 3, "tablet": 3, "desktop": 4}, "imagePosition": "top"}}
    assert validate_layout_settings(settings, "grid") == ["Grid mobile products per row must be 1 or 2"]


def test_scalar_breakpoints_are_reported_not_raised():
    grid = {"gridSettings": {"productsPerRow": 3, "imagePosition": "top"}}
    assert validate_layout_settings(grid, "grid") == ["Grid products per row must be an object"]

    slider = {"sliderSettings": {"slidesToShow": [3], "slidesToScroll": 1, "autoplaySpeed": 3000}}
    assert validate_layout_settings(slider, "slider") == ["Slider slides to show must be an object"]


def test_settings_for_another_layout_are_rejected():
    errors = validate_layout_settings({"modalSettings": {"triggerType": "button"}}, "grid")
    assert errors == ["modalSettings is not allowed for layout type 'grid'"]
