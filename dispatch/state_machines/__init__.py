#Marks state_machines as a package.
#ride_state: persisted ride lifecycle. driver_state: client-held driver workflow.
