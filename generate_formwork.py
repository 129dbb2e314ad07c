#!/usr/bin/env python
"""
Generate temporary formwork panels for the structural elements of an IFC model.

Usage:
    python generate_formwork.py input.ifc output.ifc [config.json]
    python generate_formwork.py input.ifc  # outputs to input_formwork.ifc

Example:
    python generate_formwork.py models/level1.ifc models/level1_formwork.ifc
"""

import sys
from pathlib import Path
from formwork.core.config import Config, get_default_config
from formwork.core.models import ElementCategory, STRUCTURAL_CATEGORIES
from formwork.generation.formwork_generator import FormworkGenerator
from formwork.host.ifc_model import IfcHostModel


def main():
    # Parse command line arguments
    if len(sys.argv) < 2:
        print("Usage: python generate_formwork.py input.ifc [output.ifc] [config.json]")
        print()
        print("Examples:")
        print("  python generate_formwork.py models/level1.ifc")
        print("  python generate_formwork.py models/level1.ifc models/level1_formwork.ifc")
        sys.exit(1)

    ifc_path = sys.argv[1]

    # Determine output file
    if len(sys.argv) >= 3:
        output_file = sys.argv[2]
    else:
        output_file = str(Path(ifc_path).with_name(Path(ifc_path).stem + "_formwork.ifc"))

    # Verify input file exists
    if not Path(ifc_path).exists():
        print(f"Error: Input file not found: {ifc_path}")
        sys.exit(1)

    print("=" * 60)
    print("Formwork - Panel Generator")
    print("=" * 60)
    print(f"Input:  {ifc_path}")
    print(f"Output: {output_file}")
    print()

    try:
        # Step 1: Configuration
        print("[1/4] Loading configuration...")
        config = Config(sys.argv[3]) if len(sys.argv) >= 4 else get_default_config()
        settings = config.settings
        print(f"      [OK] Wall board: {settings.wall_panel_thickness * 1000:.0f}mm")
        print(f"      [OK] Floor board: {settings.floor_panel_thickness * 1000:.0f}mm")
        print()

        # Step 2: Load model
        print("[2/4] Loading IFC model...")
        host = IfcHostModel.open(ifc_path, settings=settings)
        elements = host.elements(STRUCTURAL_CATEGORIES)
        print(f"      [OK] Storeys: {len(host.levels())}")
        print(f"      [OK] Structural elements: {len(elements)}")
        for category in STRUCTURAL_CATEGORIES:
            count = host.index.count_elements(category)
            if count:
                print(f"           {category.value}: {count}")
        print()

        # Step 3: Generate panels
        print("[3/4] Generating formwork panels...")
        generator = FormworkGenerator(host, settings=settings, config=config)
        report = generator.generate([e.id for e in elements])
        print(f"      [OK] Panels: {report.panels_created}")
        print(f"      [OK] Skipped (already formed): {len(report.skipped)}")
        if report.failed:
            print(f"      [!!] Failed elements: {len(report.failed)}")
        print()

        # Step 4: Write IFC
        print("[4/4] Writing IFC file...")
        host.write(output_file)
        print(f"      [OK] Wrote IFC file")
        print()

        # Summary
        print("=" * 60)
        print("SUCCESS!")
        print("=" * 60)
        print(f"Generated: {output_file}")
        print()
        print("Summary:")
        print(f"  - {report.panels_created} temporary panels")
        print(f"  - {len(host.elements([ElementCategory.GENERIC]))} generic entities in model")
        print(f"  - {len(report.failed)} element(s) failed")
        for result in report.results:
            if not result.success:
                print(f"      #{result.entity_id}: {result.reason}")
        print()
        print("Next steps:")
        print(f'  1. Review the panels in {output_file}')
        print(f'  2. python convert_formwork.py {output_file}')
        print()

    except Exception as e:
        print()
        print("=" * 60)
        print("ERROR!")
        print("=" * 60)
        print(f"Failed to generate formwork: {e}")
        print()
        print("Common issues:")
        print("  - No storeys in model -> Elements need a building storey")
        print("  - Missing geometry -> Elements need a Body representation")
        print("  - File not found -> Check file path is correct")
        sys.exit(1)


if __name__ == "__main__":
    main()
