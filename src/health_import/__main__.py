from .cli.health_runner import main

raise SystemExit(main())
