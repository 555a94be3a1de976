from .console.console import main

raise SystemExit(main())
