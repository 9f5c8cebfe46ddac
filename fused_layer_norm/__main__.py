from fused_layer_norm.cli import main

raise SystemExit(main())
